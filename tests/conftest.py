"""Pytest fixtures for collab-deals tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import pytest

from collab_deals.collaborators import Notifier, PaymentAuthorization, PaymentGateway
from collab_deals.config import CollabSettings
from collab_deals.lifecycle import DealMilestoneLifecycle, OfferLifecycle
from collab_deals.models import Actor, ActorRole
from collab_deals.router import SubmissionRouter
from collab_deals.store import DealStore, NegotiationHistory, OfferStore, SocialLinkRegistry
from collab_deals.uploads import UploadPipeline, UploadSink

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeSink(UploadSink):
    """
    In-memory sink. Files named in `fail_names` raise once per listed count;
    tokens in `gates` block until the matching asyncio.Event is set.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.fail_names: dict[str, int] = {}
        self.gates: dict[str, asyncio.Event] = {}

    def fail(self, file_name: str, times: int = 1) -> None:
        self.fail_names[file_name] = times

    def gate(self, client_token: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[client_token] = event
        return event

    async def store(
        self,
        client_token: str,
        chunks: AsyncIterator[bytes],
        *,
        mime_type: str,
        file_name: str,
        size_bytes: int,
    ) -> str:
        self.calls.append(client_token)
        body = b""
        async for chunk in chunks:
            body += chunk
        if client_token in self.gates:
            await self.gates[client_token].wait()
        if self.fail_names.get(file_name, 0) > 0:
            self.fail_names[file_name] -= 1
            raise ConnectionError(f"connection reset while uploading {file_name}")
        self.objects[client_token] = body
        return f"https://cdn.test/{client_token}/{file_name}"


class FakePayments(PaymentGateway):
    def __init__(self) -> None:
        self.authorized = True
        self.reason: Optional[str] = None
        self.error: Optional[Exception] = None
        self.authorizations: list[tuple[str, int]] = []
        self.releases: list[tuple[str, str, int]] = []

    async def authorize(self, offer_id: str, amount_cents: int) -> PaymentAuthorization:
        self.authorizations.append((offer_id, amount_cents))
        if self.error is not None:
            raise self.error
        return PaymentAuthorization(authorized=self.authorized, reason=self.reason)

    async def release(self, deal_id: str, milestone_id: str, amount_cents: int) -> None:
        self.releases.append((deal_id, milestone_id, amount_cents))


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = False

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("notification service down")
        self.sent.append((user_id, event_type, payload))

    def types_for(self, user_id: str) -> list[str]:
        return [t for u, t, _ in self.sent if u == user_id]


class Clock:
    """Deterministic clock; every read advances one second."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


CREATOR = Actor(id="creator-1", role=ActorRole.CREATOR)
MARKETER = Actor(id="marketer-1", role=ActorRole.MARKETER)
OUTSIDER = Actor(id="someone-else", role=ActorRole.MARKETER)


@pytest.fixture
def creator() -> Actor:
    return CREATOR


@pytest.fixture
def marketer() -> Actor:
    return MARKETER


@pytest.fixture
def outsider() -> Actor:
    return OUTSIDER


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Temporary database path for isolated tests."""
    return tmp_path / "collab_deals.db"


@pytest.fixture
def settings(temp_db: Path) -> CollabSettings:
    return CollabSettings(db_path=temp_db)


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def pipeline(sink: FakeSink) -> UploadPipeline:
    return UploadPipeline(sink, chunk_size=4)


@pytest.fixture
def offer_store(temp_db: Path) -> OfferStore:
    return OfferStore(temp_db)


@pytest.fixture
def deal_store(temp_db: Path) -> DealStore:
    return DealStore(temp_db)


@pytest.fixture
def history(temp_db: Path) -> NegotiationHistory:
    return NegotiationHistory(temp_db)


@pytest.fixture
def link_registry(temp_db: Path) -> SocialLinkRegistry:
    return SocialLinkRegistry(temp_db)


@pytest.fixture
def offers(
    offer_store: OfferStore,
    history: NegotiationHistory,
    deal_store: DealStore,
    pipeline: UploadPipeline,
    payments: FakePayments,
    notifier: RecordingNotifier,
    settings: CollabSettings,
    clock: Clock,
) -> OfferLifecycle:
    return OfferLifecycle(offer_store, history, deal_store, pipeline, payments, notifier, settings, clock)


@pytest.fixture
def milestones(
    deal_store: DealStore,
    link_registry: SocialLinkRegistry,
    pipeline: UploadPipeline,
    payments: FakePayments,
    notifier: RecordingNotifier,
    settings: CollabSettings,
    clock: Clock,
) -> DealMilestoneLifecycle:
    return DealMilestoneLifecycle(deal_store, link_registry, pipeline, payments, notifier, settings, clock)


@pytest.fixture
def router(offers: OfferLifecycle, milestones: DealMilestoneLifecycle) -> SubmissionRouter:
    return SubmissionRouter(offers, milestones)
