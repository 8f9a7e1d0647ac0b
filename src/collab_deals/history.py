"""Rebuild an offer's negotiated state by folding its NegotiationEvents.

replay(events) must reproduce the persisted offer's terms and status exactly;
the CLI's `offer history` command reports any divergence.
"""

from functools import reduce
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from collab_deals.models.actor import ActorRole
from collab_deals.models.events import NegotiationAction, NegotiationEvent
from collab_deals.models.offer import Offer, OfferStatus, OfferTerms

_STATUS_FOR_ACTION = {
    NegotiationAction.SENT: OfferStatus.SENT,
    NegotiationAction.COUNTERED: OfferStatus.SENT,
    NegotiationAction.ACCEPTED: OfferStatus.ACCEPTED,
    NegotiationAction.REJECTED: OfferStatus.REJECTED,
    NegotiationAction.EXPIRED: OfferStatus.EXPIRED,
}


class NegotiationState(BaseModel):
    """Folded view of an offer's negotiation."""

    terms: OfferTerms = Field(default_factory=OfferTerms)
    status: OfferStatus = OfferStatus.DRAFT
    sender_role: Optional[ActorRole] = None
    rounds: int = 0
    version: Optional[int] = None

    def differences(self, offer: Offer) -> list[str]:
        """Fields where the persisted offer disagrees with this state."""
        diffs = []
        if self.terms != offer.terms:
            diffs.append("terms")
        if self.status != offer.status:
            diffs.append("status")
        if self.sender_role is not None and self.sender_role != offer.sender_role:
            diffs.append("sender_role")
        if self.rounds != offer.rounds:
            diffs.append("rounds")
        return diffs


def apply_event(state: NegotiationState, event: NegotiationEvent) -> NegotiationState:
    """Apply one event. Sent and Countered replace terms wholesale; terminal actions keep them."""
    update: dict = {"status": _STATUS_FOR_ACTION[event.action], "version": event.sequence}
    if event.action in (NegotiationAction.SENT, NegotiationAction.COUNTERED):
        update["terms"] = event.new_terms
        update["sender_role"] = event.actor_role
    if event.action is NegotiationAction.COUNTERED:
        update["rounds"] = state.rounds + 1
    return state.model_copy(update=update)


def ordered(events: Iterable[NegotiationEvent]) -> list[NegotiationEvent]:
    """Sequence (the offer version each event produced) is the order; timestamps can drift."""
    return sorted(events, key=lambda e: e.sequence)


def replay(
    events: Iterable[NegotiationEvent],
    initial_terms: Optional[OfferTerms] = None,
) -> NegotiationState:
    """Fold events in sequence order starting from the initial draft terms."""
    start = NegotiationState(terms=initial_terms or OfferTerms())
    return reduce(apply_event, ordered(events), start)
