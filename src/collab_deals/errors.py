"""Error taxonomy for offer, milestone and upload operations.

Every error carries a ``category`` so callers can decide between a retry
affordance, a refetch prompt or a blocking message without parsing text.
"""

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from collab_deals.models.upload import UploadedFile


class CollabError(Exception):
    """Base class for all domain errors."""

    category: str = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CollabError):
    """Terms, dates, amounts or evidence failed validation. Never persisted."""

    category = "validation"

    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Validation failed")


class NotFound(CollabError):
    category = "not_found"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class NotPermitted(CollabError):
    """The actor is not the party allowed to perform this action."""

    category = "not_permitted"

    def __init__(self, actor_id: str, action: str, reason: str):
        super().__init__(f"{actor_id} may not '{action}': {reason}")
        self.actor_id = actor_id
        self.action = action
        self.reason = reason


class IllegalTransition(CollabError):
    """Attempted transition is not valid from the entity's current status."""

    category = "illegal_transition"

    def __init__(self, entity_id: str, action: str, current: str, reason: Optional[str] = None):
        msg = f"Cannot '{action}' {entity_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity_id = entity_id
        self.action = action
        self.current_status = current
        self.reason = reason


class ContentApprovalRequired(IllegalTransition):
    """Milestone work is blocked until the deal's offer content is approved."""

    category = "content_approval_required"

    def __init__(self, deal_id: str, milestone_id: str, content_status: str):
        super().__init__(
            milestone_id,
            "submit",
            content_status,
            f"offer content for deal {deal_id} must be approved first",
        )
        self.deal_id = deal_id


class StaleVersion(CollabError):
    """Caller's observed version no longer matches; refetch and retry."""

    category = "stale_version"

    def __init__(self, kind: str, entity_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"{kind} {entity_id} changed (expected version {expected}, current {actual})"
        )
        self.kind = kind
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


class StaleOfferVersion(StaleVersion):
    def __init__(self, offer_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__("Offer", offer_id, expected, actual)


class StaleMilestoneVersion(StaleVersion):
    def __init__(self, milestone_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__("Milestone", milestone_id, expected, actual)


class StaleDealVersion(StaleVersion):
    def __init__(self, deal_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__("Deal", deal_id, expected, actual)


class FileRejected(CollabError):
    """A single file violated an upload constraint. Siblings are unaffected."""

    category = "file_rejected"

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"{file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class PartialFailure(CollabError):
    """An upload session ended with at least one file not Stored."""

    category = "partial_failure"

    def __init__(
        self,
        stored_files: Sequence["UploadedFile"],
        failed_files: Sequence["UploadedFile"],
        message: Optional[str] = None,
    ):
        self.stored_files = list(stored_files)
        self.failed_files = list(failed_files)
        super().__init__(
            message
            or f"{len(self.failed_files)} of "
            f"{len(self.stored_files) + len(self.failed_files)} files failed to upload"
        )

    @property
    def failed_tokens(self) -> list[str]:
        return [f.client_token for f in self.failed_files]


class UploadCancelled(PartialFailure):
    category = "upload_cancelled"

    def __init__(self, stored_files: Sequence["UploadedFile"], failed_files: Sequence["UploadedFile"]):
        super().__init__(stored_files, failed_files, "Upload session was cancelled")


class EvidenceIncomplete(CollabError):
    """A transition needing evidence was refused because uploads did not all succeed."""

    category = "evidence_incomplete"

    def __init__(self, entity_id: str, failure: Optional[PartialFailure] = None, message: Optional[str] = None):
        self.entity_id = entity_id
        self.failure = failure
        failed = failure.failed_tokens if failure else []
        super().__init__(message or f"Evidence for {entity_id} incomplete; failed files: {failed}")

    @property
    def failed_tokens(self) -> list[str]:
        return self.failure.failed_tokens if self.failure else []


class AttachmentsIncomplete(EvidenceIncomplete):
    """Offer cannot be sent while any attachment is not Stored."""

    def __init__(self, offer_id: str, pending_tokens: Sequence[str]):
        super().__init__(
            offer_id,
            message=f"Offer {offer_id} has attachments that are not stored: {list(pending_tokens)}",
        )
        self.pending_tokens = list(pending_tokens)

    @property
    def failed_tokens(self) -> list[str]:
        return self.pending_tokens


class PaymentFailed(CollabError):
    """Payment authorization was declined or could not be obtained."""

    category = "payment_failed"

    def __init__(self, offer_id: str, reason: Optional[str] = None):
        super().__init__(f"Payment authorization failed for offer {offer_id}: {reason or 'declined'}")
        self.offer_id = offer_id
        self.reason = reason


class SubmissionInProgress(CollabError):
    """Another submission for the same target is still uploading. Wait, then poll."""

    category = "submission_in_progress"

    def __init__(self, target: str):
        super().__init__(f"A submission for {target} is already in progress")
        self.target = target
