"""Deal, milestone and review models."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from collab_deals.models.upload import UploadedFile


class DealStatus(str, Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class MilestoneStatus(str, Enum):
    ASSIGNED = "Assigned"
    SUBMITTED = "Submitted"
    RESUBMITTED = "Resubmitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ContentStatus(str, Enum):
    NOT_SUBMITTED = "NotSubmitted"
    PENDING = "Pending"
    APPROVED = "Approved"
    REVISION_REQUIRED = "RevisionRequired"


class ProofStatus(str, Enum):
    PENDING_REVIEW = "PendingReview"
    APPROVED = "Approved"
    REVISION_REQUIRED = "RevisionRequired"


class FeedbackEntry(BaseModel):
    """Reviewer comment tied to the submission version it critiques."""

    submission_version: int
    decision: ReviewDecision
    comment: str = ""
    reviewer_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MilestoneSubmission(BaseModel):
    """One creator attempt (submit or resubmit) at a milestone."""

    version: int
    attachments: list[UploadedFile] = Field(default_factory=list)
    social_links: list[str] = Field(default_factory=list)
    submitted_by: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Milestone(BaseModel):
    """A deliverable unit of a deal requiring creator evidence and marketer review."""

    id: str
    deal_id: str
    position: int
    name: str
    amount: Decimal
    due_date: Optional[date] = None
    deliverables: list[str] = Field(default_factory=list, description="Platform tags")

    status: MilestoneStatus = MilestoneStatus.ASSIGNED
    previous_status: Optional[MilestoneStatus] = None
    submissions: list[MilestoneSubmission] = Field(default_factory=list)
    social_links: list[str] = Field(default_factory=list)
    feedback_history: list[FeedbackEntry] = Field(default_factory=list)
    approved_at: Optional[datetime] = None
    version: int = 1

    @property
    def current_submission_version(self) -> int:
        return len(self.submissions)

    @property
    def attachments(self) -> list[UploadedFile]:
        """Every attachment ever submitted, oldest first."""
        return [a for s in self.submissions for a in s.attachments]


class ContentSubmission(BaseModel):
    version: int
    attachments: list[UploadedFile] = Field(default_factory=list)
    submitted_by: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ContentGate(BaseModel):
    """Pre-production approval of offer content, recorded on the deal."""

    status: ContentStatus = ContentStatus.NOT_SUBMITTED
    submissions: list[ContentSubmission] = Field(default_factory=list)
    feedback: list[FeedbackEntry] = Field(default_factory=list)


class ProofSubmission(BaseModel):
    """Free-standing proof attached to a deal."""

    id: str
    attachments: list[UploadedFile] = Field(default_factory=list)
    social_links: list[str] = Field(default_factory=list)
    status: ProofStatus = ProofStatus.PENDING_REVIEW
    submitted_by: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    feedback: list[FeedbackEntry] = Field(default_factory=list)
    approved_at: Optional[datetime] = None


class Deal(BaseModel):
    """Binding form of an accepted offer."""

    id: str
    offer_id: str
    deal_number: str
    deal_name: str
    creator_id: str
    marketer_id: str
    amount: Decimal
    currency: str = "USD"
    status: DealStatus = DealStatus.ACTIVE
    requires_content_approval: bool = False
    offer_content: ContentGate = Field(default_factory=ContentGate)
    proofs: list[ProofSubmission] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 1

    def milestone(self, milestone_id: str) -> Optional[Milestone]:
        return next((m for m in self.milestones if m.id == milestone_id), None)
