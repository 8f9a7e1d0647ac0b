"""Tests for folding negotiation events back into offer state."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from collab_deals.history import NegotiationState, apply_event, replay
from collab_deals.models import ActorRole, NegotiationAction, NegotiationEvent, OfferStatus, OfferTerms

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _event(sequence: int, action: NegotiationAction, role: ActorRole, amount: str, minutes: int) -> NegotiationEvent:
    return NegotiationEvent(
        offer_id="o1",
        sequence=sequence,
        action=action,
        actor_id=f"{role.value}-1",
        actor_role=role,
        new_terms=OfferTerms(proposed_amount=Decimal(amount), deliverables=["instagram"]),
        timestamp=T0 + timedelta(minutes=minutes),
    )


class TestApplyEvent:
    def test_sent_takes_new_terms_and_sender(self) -> None:
        state = apply_event(NegotiationState(), _event(2, NegotiationAction.SENT, ActorRole.MARKETER, "500", 0))
        assert state.status is OfferStatus.SENT
        assert state.terms.proposed_amount == Decimal("500")
        assert state.sender_role is ActorRole.MARKETER
        assert state.version == 2
        assert state.rounds == 0

    def test_counter_replaces_terms_and_counts_round(self) -> None:
        state = apply_event(NegotiationState(), _event(2, NegotiationAction.SENT, ActorRole.MARKETER, "500", 0))
        state = apply_event(state, _event(3, NegotiationAction.COUNTERED, ActorRole.CREATOR, "600", 1))
        assert state.status is OfferStatus.SENT
        assert state.terms.proposed_amount == Decimal("600")
        assert state.sender_role is ActorRole.CREATOR
        assert state.rounds == 1

    def test_terminal_actions_keep_terms(self) -> None:
        state = apply_event(NegotiationState(), _event(2, NegotiationAction.SENT, ActorRole.MARKETER, "500", 0))
        for action, status in (
            (NegotiationAction.ACCEPTED, OfferStatus.ACCEPTED),
            (NegotiationAction.REJECTED, OfferStatus.REJECTED),
            (NegotiationAction.EXPIRED, OfferStatus.EXPIRED),
        ):
            folded = apply_event(state, _event(3, action, ActorRole.CREATOR, "500", 1))
            assert folded.status is status
            assert folded.terms == state.terms
            assert folded.sender_role is ActorRole.MARKETER


class TestReplay:
    def test_no_events_returns_initial_terms(self) -> None:
        initial = OfferTerms(description="draft")
        state = replay([], initial)
        assert state.terms == initial
        assert state.status is OfferStatus.DRAFT

    def test_events_folded_in_sequence_order(self) -> None:
        """Input order does not matter; sequence decides."""
        events = [
            _event(4, NegotiationAction.ACCEPTED, ActorRole.MARKETER, "600", 10),
            _event(2, NegotiationAction.SENT, ActorRole.MARKETER, "500", 0),
            _event(3, NegotiationAction.COUNTERED, ActorRole.CREATOR, "600", 5),
        ]
        state = replay(events)
        assert state.status is OfferStatus.ACCEPTED
        assert state.terms.proposed_amount == Decimal("600")
        assert state.rounds == 1
        assert state.version == 4

    def test_clock_step_back_does_not_reorder(self) -> None:
        """A counter stamped earlier than the Sent before it still folds after it."""
        events = [
            _event(2, NegotiationAction.SENT, ActorRole.MARKETER, "500", 10),
            _event(3, NegotiationAction.COUNTERED, ActorRole.CREATOR, "650", 0),
        ]
        state = replay(events)
        assert state.terms.proposed_amount == Decimal("650")
        assert state.sender_role is ActorRole.CREATOR
        assert state.version == 3

    def test_replay_is_deterministic(self) -> None:
        events = [
            _event(2, NegotiationAction.SENT, ActorRole.MARKETER, "500", 0),
            _event(3, NegotiationAction.COUNTERED, ActorRole.CREATOR, "700", 5),
        ]
        assert replay(events) == replay(list(reversed(events)))
