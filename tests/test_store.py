"""Unit tests for the SQLite stores."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from collab_deals.errors import IllegalTransition, StaleDealVersion, StaleMilestoneVersion, StaleOfferVersion
from collab_deals.lifecycle.derivation import derive_deal
from collab_deals.models import (
    ActorRole,
    DealStatus,
    MilestoneStatus,
    NegotiationAction,
    NegotiationEvent,
    Offer,
    OfferStatus,
    OfferTerms,
)
from collab_deals.store import DealStore, NegotiationHistory, OfferStore, SocialLinkRegistry

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _make_offer(offer_id: str = "o1", **kwargs) -> Offer:
    defaults = {
        "id": offer_id,
        "creator_id": "c1",
        "marketer_id": "m1",
        "owner_id": "m1",
        "owner_role": ActorRole.MARKETER,
        "offer_name": "Launch",
        "terms": OfferTerms(proposed_amount=Decimal("500"), deliverables=["instagram"]),
        "created_at": NOW,
        "updated_at": NOW,
    }
    defaults.update(kwargs)
    return Offer(**defaults)


class TestOfferStore:
    def test_create_and_get_roundtrip(self, offer_store: OfferStore) -> None:
        offer = offer_store.create(_make_offer())
        loaded = offer_store.get("o1")
        assert loaded == offer
        assert offer_store.get("missing") is None

    def test_save_with_expected_version(self, offer_store: OfferStore) -> None:
        offer = offer_store.create(_make_offer())
        updated = offer.model_copy(update={"status": OfferStatus.SENT, "version": 2, "sent_at": NOW})
        offer_store.save(updated, expected_version=1)
        assert offer_store.get("o1").status is OfferStatus.SENT
        assert offer_store.get("o1").version == 2

    def test_stale_save_rejected(self, offer_store: OfferStore) -> None:
        """Compare-and-swap: a second writer holding version 1 loses."""
        offer = offer_store.create(_make_offer())
        offer_store.save(offer.model_copy(update={"version": 2, "offer_name": "First"}), 1)
        with pytest.raises(StaleOfferVersion) as exc_info:
            offer_store.save(offer.model_copy(update={"version": 2, "offer_name": "Second"}), 1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert offer_store.get("o1").offer_name == "First"

    def test_list_sent_before(self, offer_store: OfferStore) -> None:
        offer_store.create(_make_offer("old", status=OfferStatus.SENT, sent_at=NOW - timedelta(days=10)))
        offer_store.create(_make_offer("fresh", status=OfferStatus.SENT, sent_at=NOW - timedelta(days=1)))
        offer_store.create(_make_offer("draft"))
        offer_store.create(
            _make_offer("gone", status=OfferStatus.SENT, sent_at=NOW - timedelta(days=10), deleted_at=NOW)
        )
        stale = offer_store.list_sent_before(NOW - timedelta(days=7))
        assert [o.id for o in stale] == ["old"]

    def test_list_for_party_and_status(self, offer_store: OfferStore) -> None:
        offer_store.create(_make_offer("a"))
        offer_store.create(_make_offer("b", creator_id="c2"))
        assert {o.id for o in offer_store.list_for_party("c1")} == {"a"}
        assert {o.id for o in offer_store.list_for_party("m1")} == {"a", "b"}
        assert len(offer_store.list_by_status(OfferStatus.DRAFT)) == 2


class TestDealStore:
    def _deal(self, offer_id: str = "o1"):
        return derive_deal(_make_offer(offer_id, status=OfferStatus.ACCEPTED), NOW)

    def test_create_and_get_with_milestones(self, deal_store: DealStore) -> None:
        deal = deal_store.create(self._deal())
        loaded = deal_store.get(deal.id)
        assert loaded == deal
        assert deal_store.get_by_offer("o1").id == deal.id
        assert deal_store.get_milestone(deal.milestones[0].id) == deal.milestones[0]

    def test_one_deal_per_offer(self, deal_store: DealStore) -> None:
        deal_store.create(self._deal())
        with pytest.raises(IllegalTransition):
            deal_store.create(self._deal())

    def test_milestone_compare_and_swap(self, deal_store: DealStore) -> None:
        deal = deal_store.create(self._deal())
        m = deal.milestones[0]
        deal_store.save_milestone(m.model_copy(update={"status": MilestoneStatus.SUBMITTED, "version": 2}), 1)
        with pytest.raises(StaleMilestoneVersion):
            deal_store.save_milestone(m.model_copy(update={"status": MilestoneStatus.SUBMITTED, "version": 2}), 1)
        assert deal_store.get(deal.id).milestones[0].status is MilestoneStatus.SUBMITTED

    def test_deal_save_leaves_milestones_alone(self, deal_store: DealStore) -> None:
        deal = deal_store.create(self._deal())
        deal_store.save_deal(deal.model_copy(update={"status": DealStatus.COMPLETED, "version": 2}), 1)
        loaded = deal_store.get(deal.id)
        assert loaded.status is DealStatus.COMPLETED
        assert len(loaded.milestones) == 1
        with pytest.raises(StaleDealVersion):
            deal_store.save_deal(deal.model_copy(update={"version": 2}), 1)


class TestNegotiationHistory:
    def _event(self, sequence: int, action: NegotiationAction, at: datetime, amount: str = "500") -> NegotiationEvent:
        return NegotiationEvent(
            offer_id="o1",
            sequence=sequence,
            action=action,
            actor_id="m1",
            actor_role=ActorRole.MARKETER,
            new_terms=OfferTerms(proposed_amount=Decimal(amount)),
            timestamp=at,
        )

    def test_listed_in_sequence_order(self, history: NegotiationHistory) -> None:
        history.append(self._event(3, NegotiationAction.COUNTERED, NOW + timedelta(minutes=5), "600"))
        history.append(self._event(2, NegotiationAction.SENT, NOW))
        events = history.list_for("o1")
        assert [e.sequence for e in events] == [2, 3]
        assert events[1].new_terms.proposed_amount == Decimal("600")
        assert history.list_for("other") == []

    def test_sequence_breaks_timestamp_ties(self, history: NegotiationHistory) -> None:
        history.append(self._event(3, NegotiationAction.ACCEPTED, NOW))
        history.append(self._event(2, NegotiationAction.SENT, NOW))
        assert [e.action for e in history.list_for("o1")] == [NegotiationAction.SENT, NegotiationAction.ACCEPTED]

    def test_earlier_timestamp_does_not_reorder(self, history: NegotiationHistory) -> None:
        """Wall clock stepped back between Sent and Counter; the ledger keeps version order."""
        history.append(self._event(2, NegotiationAction.SENT, NOW))
        history.append(self._event(3, NegotiationAction.COUNTERED, NOW - timedelta(minutes=3), "600"))
        events = history.list_for("o1")
        assert [e.action for e in events] == [NegotiationAction.SENT, NegotiationAction.COUNTERED]
        assert events[-1].new_terms.proposed_amount == Decimal("600")

    def test_append_joins_caller_transaction(self, offer_store: OfferStore, history: NegotiationHistory) -> None:
        """An event written on a shared connection is discarded when that transaction rolls back."""
        with pytest.raises(RuntimeError):
            with offer_store.transaction() as conn:
                history.append(self._event(2, NegotiationAction.SENT, NOW), conn)
                raise RuntimeError("abort")
        assert history.list_for("o1") == []

    def test_previous_terms_roundtrip(self, history: NegotiationHistory) -> None:
        event = self._event(3, NegotiationAction.COUNTERED, NOW, "600").model_copy(
            update={"previous_terms": OfferTerms(proposed_amount=Decimal("500")), "note": "closer"}
        )
        history.append(event)
        assert history.list_for("o1") == [event]


class TestSocialLinkRegistry:
    def test_append_only_in_order(self, temp_db: Path) -> None:
        registry = SocialLinkRegistry(temp_db)
        registry.append("m1", ["https://a.test/1", "https://a.test/2"], "c1")
        registry.append("m1", ["https://a.test/3"], "c1")
        registry.append("m2", ["https://b.test/1"], "c1")
        assert [link.url for link in registry.list_for("m1")] == [
            "https://a.test/1",
            "https://a.test/2",
            "https://a.test/3",
        ]
        assert registry.list_for("m1")[0].added_by == "c1"
