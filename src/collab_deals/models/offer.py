"""Offer, negotiable terms and draft input models."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from collab_deals.models.actor import ActorRole
from collab_deals.models.upload import UploadedFile


class OfferStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    COUNTERED = "Countered"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


TERMINAL_OFFER_STATUSES = frozenset(
    {OfferStatus.ACCEPTED, OfferStatus.REJECTED, OfferStatus.EXPIRED}
)


class OfferType(str, Enum):
    CUSTOM = "custom"
    TEMPLATE = "template"


def _reject_float(v: object) -> object:
    if isinstance(v, float):
        raise ValueError("Use Decimal or string, not float, for monetary values")
    return v


class OfferTerms(BaseModel):
    """The negotiable fields of an offer. A counter replaces all of them at once."""

    model_config = ConfigDict(frozen=True)

    proposed_amount: Optional[Decimal] = None
    deliverables: tuple[str, ...] = ()
    desired_review_date: Optional[date] = None
    desired_post_date: Optional[date] = None
    description: str = ""

    @field_validator("proposed_amount", mode="before")
    @classmethod
    def _no_float_amount(cls, v: object) -> object:
        return _reject_float(v)

    @field_validator("deliverables", mode="before")
    @classmethod
    def _dedupe_deliverables(cls, v: object) -> object:
        """Deliverables are an ordered set of platform tags."""
        if isinstance(v, (list, tuple)):
            seen: list[str] = []
            for tag in v:
                tag = str(tag).strip().lower()
                if tag and tag not in seen:
                    seen.append(tag)
            return tuple(seen)
        return v


class MilestoneShare(BaseModel):
    """One slice of an explicit milestone breakdown."""

    model_config = ConfigDict(frozen=True)

    name: str
    percentage: Decimal
    deliverables: tuple[str, ...] = ()

    @field_validator("percentage", mode="before")
    @classmethod
    def _no_float_percentage(cls, v: object) -> object:
        return _reject_float(v)


class OfferDraft(BaseModel):
    """Editable fields supplied to save_draft."""

    creator_id: str
    marketer_id: str
    offer_name: str
    offer_type: OfferType = OfferType.CUSTOM
    terms: OfferTerms = Field(default_factory=OfferTerms)
    notes: Optional[str] = None
    agreed_to_terms: bool = False
    requires_content_approval: bool = False
    milestone_breakdown: Optional[list[MilestoneShare]] = None
    remove_attachments: list[str] = Field(
        default_factory=list,
        description="Client tokens of attachment references to drop",
    )


class Offer(BaseModel):
    """A proposed collaboration between a marketer and a creator."""

    id: str
    creator_id: str
    marketer_id: str
    owner_id: str = Field(..., description="Actor that drafted the offer")
    owner_role: ActorRole
    offer_name: str
    offer_type: OfferType = OfferType.CUSTOM
    terms: OfferTerms = Field(default_factory=OfferTerms)
    notes: Optional[str] = None
    attachments: list[UploadedFile] = Field(default_factory=list)
    agreed_to_terms: bool = False
    requires_content_approval: bool = False
    milestone_breakdown: Optional[list[MilestoneShare]] = None

    status: OfferStatus = OfferStatus.DRAFT
    sender_role: Optional[ActorRole] = Field(
        default=None,
        description="Role that made the last Sent/Countered transition",
    )
    rounds: int = 0
    sent_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OFFER_STATUSES

    @property
    def recipient_role(self) -> Optional[ActorRole]:
        return self.sender_role.counterpart if self.sender_role else None

    def party_id(self, role: ActorRole) -> str:
        return self.creator_id if role is ActorRole.CREATOR else self.marketer_id
