"""Single entry point for evidence submissions.

A SubmissionRequest names a target and a mode; the router dispatches it to the
owning lifecycle and refuses a second submission for the same target while the
first one's uploads are still unresolved.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from collab_deals.errors import SubmissionInProgress
from collab_deals.lifecycle.evidence import SessionCallback
from collab_deals.lifecycle.milestones import DealMilestoneLifecycle
from collab_deals.lifecycle.offers import OfferLifecycle
from collab_deals.models.actor import Actor
from collab_deals.models.deal import Deal, Milestone
from collab_deals.models.offer import Offer
from collab_deals.models.upload import LocalFile
from collab_deals.uploads.pipeline import ProgressCallback

logger = logging.getLogger(__name__)


class SubmissionMode(str, Enum):
    WORK = "work"
    RESUBMISSION = "resubmission"
    OFFER_CONTENT = "offer_content"
    PROOF = "proof"
    OFFER_ATTACHMENTS = "offer_attachments"


# Modes that share a lock scope: submit and resubmit of one milestone exclude each other
_TARGET_KIND = {
    SubmissionMode.WORK: "milestone",
    SubmissionMode.RESUBMISSION: "milestone",
    SubmissionMode.OFFER_CONTENT: "deal",
    SubmissionMode.PROOF: "deal",
    SubmissionMode.OFFER_ATTACHMENTS: "offer",
}


class SubmissionRequest(BaseModel):
    """One client attempt to submit evidence. Never persisted."""

    mode: SubmissionMode
    target_id: str = Field(..., description="Milestone, deal or offer id depending on mode")
    actor: Actor
    files: list[LocalFile] = Field(default_factory=list)
    social_links: list[str] = Field(default_factory=list)
    expected_version: int

    @property
    def lock_key(self) -> str:
        return f"{_TARGET_KIND[self.mode]}:{self.target_id}"


class SubmissionRouter:
    def __init__(self, offers: OfferLifecycle, milestones: DealMilestoneLifecycle):
        self.offers = offers
        self.milestones = milestones
        self._in_flight: set[str] = set()
        self._handlers = {
            SubmissionMode.WORK: self._work,
            SubmissionMode.RESUBMISSION: self._resubmission,
            SubmissionMode.OFFER_CONTENT: self._offer_content,
            SubmissionMode.PROOF: self._proof,
            SubmissionMode.OFFER_ATTACHMENTS: self._offer_attachments,
        }

    def is_in_flight(self, mode: SubmissionMode, target_id: str) -> bool:
        return f"{_TARGET_KIND[SubmissionMode(mode)]}:{target_id}" in self._in_flight

    async def route(
        self,
        request: SubmissionRequest,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_session: Optional[SessionCallback] = None,
    ) -> Milestone | Deal | Offer:
        """Dispatch request; raises SubmissionInProgress if its target is already busy."""
        key = request.lock_key
        if key in self._in_flight:
            logger.info("Refusing %s submission for %s: already in progress", request.mode.value, key)
            raise SubmissionInProgress(key)
        self._in_flight.add(key)
        try:
            handler = self._handlers[request.mode]
            return await handler(request, on_progress, on_session)
        finally:
            self._in_flight.discard(key)

    async def _work(self, request, on_progress, on_session) -> Milestone:
        return await self.milestones.submit(
            request.target_id,
            request.actor,
            request.files,
            request.social_links,
            expected_version=request.expected_version,
            on_progress=on_progress,
            on_session=on_session,
        )

    async def _resubmission(self, request, on_progress, on_session) -> Milestone:
        return await self.milestones.resubmit(
            request.target_id,
            request.actor,
            request.files,
            request.social_links,
            expected_version=request.expected_version,
            on_progress=on_progress,
            on_session=on_session,
        )

    async def _offer_content(self, request, on_progress, on_session) -> Deal:
        return await self.milestones.submit_offer_content(
            request.target_id,
            request.actor,
            request.files,
            request.expected_version,
            on_progress=on_progress,
            on_session=on_session,
        )

    async def _proof(self, request, on_progress, on_session) -> Deal:
        return await self.milestones.submit_proof(
            request.target_id,
            request.actor,
            request.files,
            request.social_links,
            expected_version=request.expected_version,
            on_progress=on_progress,
            on_session=on_session,
        )

    async def _offer_attachments(self, request, on_progress, on_session) -> Offer:
        return await self.offers.attach_files(
            request.target_id,
            request.actor,
            request.files,
            request.expected_version,
            on_progress=on_progress,
            on_session=on_session,
        )
