"""Immutable negotiation ledger entries."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from collab_deals.models.actor import ActorRole
from collab_deals.models.offer import OfferTerms


class NegotiationAction(str, Enum):
    SENT = "Sent"
    COUNTERED = "Countered"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


class NegotiationEvent(BaseModel):
    """Snapshot appended whenever an offer's terms or status change."""

    model_config = ConfigDict(frozen=True)

    offer_id: str
    sequence: int = Field(..., description="Offer version produced by this transition")
    action: NegotiationAction
    actor_id: str
    actor_role: ActorRole
    previous_terms: Optional[OfferTerms] = None
    new_terms: OfferTerms
    note: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
