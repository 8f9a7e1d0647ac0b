"""
Deal / Milestone Lifecycle Service

Per milestone: Assigned -> Submitted -> {Approved, Rejected};
Rejected -> Resubmitted -> {Approved, Rejected}, repeating until Approved.

Creators submit evidence (files + social links); the deal's marketer reviews.
Evidence is all-or-nothing: if any file fails to upload the transition is refused.
The deal also carries an offer-content approval gate and free-standing proofs.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from collab_deals.collaborators import Notifier, PaymentGateway, notify_quietly, release_quietly
from collab_deals.config import CollabSettings
from collab_deals.errors import (
    ContentApprovalRequired,
    IllegalTransition,
    NotFound,
    NotPermitted,
    StaleDealVersion,
    StaleMilestoneVersion,
    ValidationError,
)
from collab_deals.models.actor import Actor, ActorRole
from collab_deals.models.deal import (
    ContentStatus,
    ContentSubmission,
    Deal,
    DealStatus,
    FeedbackEntry,
    Milestone,
    MilestoneStatus,
    MilestoneSubmission,
    ProofSubmission,
    ReviewDecision,
)
from collab_deals.models.upload import LocalFile
from collab_deals.store.deal_store import DealStore
from collab_deals.store.social_links import SocialLinkRegistry
from collab_deals.uploads.pipeline import ProgressCallback, UploadPipeline

from .evidence import SessionCallback, collect_evidence
from .rules import (
    CONTENT_TRANSITIONS,
    MILESTONE_TRANSITIONS,
    PROOF_TRANSITIONS,
    require_transition,
    validate_social_links,
)

logger = logging.getLogger(__name__)

_COMPLETION_ATTEMPTS = 3


def amount_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1")))


class DealMilestoneLifecycle:
    def __init__(
        self,
        deals: DealStore,
        social_links: SocialLinkRegistry,
        pipeline: UploadPipeline,
        payments: PaymentGateway,
        notifier: Notifier,
        settings: Optional[CollabSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.deals = deals
        self.social_links = social_links
        self.pipeline = pipeline
        self.payments = payments
        self.notifier = notifier
        self.settings = settings or CollabSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── Helpers ──────────────────────────────────────────────────────────

    def _load_deal(self, deal_id: str) -> Deal:
        deal = self.deals.get(deal_id)
        if deal is None:
            raise NotFound("Deal", deal_id)
        return deal

    def _load_milestone(self, milestone_id: str) -> tuple[Milestone, Deal]:
        milestone = self.deals.get_milestone(milestone_id)
        if milestone is None:
            raise NotFound("Milestone", milestone_id)
        return milestone, self._load_deal(milestone.deal_id)

    @staticmethod
    def _require_party(deal: Deal, actor: Actor, role: ActorRole, action: str) -> None:
        party_id = deal.creator_id if role is ActorRole.CREATOR else deal.marketer_id
        if actor.role is not role or actor.id != party_id:
            raise NotPermitted(actor.id, action, f"only the deal's {role.value} may do this")

    @staticmethod
    def _require_active(deal: Deal, entity_id: str, action: str) -> None:
        if deal.status is not DealStatus.ACTIVE:
            raise IllegalTransition(entity_id, action, deal.status.value, f"deal {deal.id} is not active")

    @staticmethod
    def _require_feedback(decision: ReviewDecision, feedback: Optional[str]) -> None:
        if decision is ReviewDecision.REJECT and not (feedback or "").strip():
            raise ValidationError(["Feedback is required when requesting changes"])

    @staticmethod
    def _check_deal_version(deal: Deal, expected_version: Optional[int]) -> None:
        if expected_version != deal.version:
            raise StaleDealVersion(deal.id, expected_version, deal.version)

    def _commit_deal(self, deal: Deal, expected_version: int, **update) -> Deal:
        updated = deal.model_copy(
            update={**update, "version": deal.version + 1, "updated_at": self._clock()}
        )
        return self.deals.save_deal(updated, expected_version)

    async def _notify(self, user_id: str, event_type: str, payload: dict) -> None:
        await notify_quietly(self.notifier, user_id, event_type, payload)

    # ── Milestone work ───────────────────────────────────────────────────

    async def submit(
        self,
        milestone_id: str,
        actor: Actor,
        files: Sequence[LocalFile] = (),
        social_links: Sequence[str] = (),
        *,
        expected_version: int,
        on_progress: Optional[ProgressCallback] = None,
        on_session: Optional[SessionCallback] = None,
    ) -> Milestone:
        """Assigned -> Submitted."""
        return await self._submit_work(
            "submit", milestone_id, actor, files, social_links, expected_version, on_progress, on_session
        )

    async def resubmit(
        self,
        milestone_id: str,
        actor: Actor,
        files: Sequence[LocalFile] = (),
        social_links: Sequence[str] = (),
        *,
        expected_version: int,
        on_progress: Optional[ProgressCallback] = None,
        on_session: Optional[SessionCallback] = None,
    ) -> Milestone:
        """Rejected -> Resubmitted. Earlier submissions are kept for reviewers to compare."""
        return await self._submit_work(
            "resubmit", milestone_id, actor, files, social_links, expected_version, on_progress, on_session
        )

    async def _submit_work(
        self,
        action: str,
        milestone_id: str,
        actor: Actor,
        files: Sequence[LocalFile],
        social_links: Sequence[str],
        expected_version: int,
        on_progress: Optional[ProgressCallback],
        on_session: Optional[SessionCallback],
    ) -> Milestone:
        milestone, deal = self._load_milestone(milestone_id)
        if expected_version != milestone.version:
            raise StaleMilestoneVersion(milestone.id, expected_version, milestone.version)
        self._require_party(deal, actor, ActorRole.CREATOR, action)
        self._require_active(deal, milestone.id, action)
        target = require_transition(MILESTONE_TRANSITIONS, milestone.id, action, milestone.status)
        if deal.requires_content_approval and deal.offer_content.status is not ContentStatus.APPROVED:
            raise ContentApprovalRequired(deal.id, milestone.id, deal.offer_content.status.value)

        links = validate_social_links(social_links)
        if not files and not links:
            raise ValidationError(["At least one file or social link is required"])

        stored = await collect_evidence(
            self.pipeline,
            milestone.id,
            files,
            self.settings.deliverables,
            on_progress=on_progress,
            on_session=on_session,
        )

        now = self._clock()
        submission = MilestoneSubmission(
            version=milestone.current_submission_version + 1,
            attachments=stored,
            social_links=links,
            submitted_by=actor.id,
            submitted_at=now,
        )
        updated = milestone.model_copy(
            update={
                "status": target,
                "previous_status": milestone.status,
                "submissions": [*milestone.submissions, submission],
                "social_links": [*milestone.social_links, *links],
                "version": milestone.version + 1,
            }
        )
        self.deals.save_milestone(updated, expected_version)
        if links:
            self.social_links.append(milestone.id, links, actor.id)

        logger.info(
            "Milestone %s %s (submission v%d, %d file(s), %d link(s))",
            milestone.id,
            target.value.lower(),
            submission.version,
            len(stored),
            len(links),
        )
        await self._notify(
            deal.marketer_id,
            f"milestone_{target.value.lower()}",
            {"dealId": deal.id, "milestoneId": milestone.id, "submissionVersion": submission.version},
        )
        return updated

    async def review(
        self,
        milestone_id: str,
        actor: Actor,
        decision: ReviewDecision,
        expected_version: int,
        feedback: Optional[str] = None,
    ) -> Milestone:
        """
        Marketer decision on the latest submission. Every decision changes status.
        approve -> Approved, payment release signalled, deal completed when all milestones are approved
        reject  -> Rejected, feedback tagged with the submission version it critiques
        """
        decision = ReviewDecision(decision)
        milestone, deal = self._load_milestone(milestone_id)
        if expected_version != milestone.version:
            raise StaleMilestoneVersion(milestone.id, expected_version, milestone.version)
        self._require_party(deal, actor, ActorRole.MARKETER, "review")
        self._require_active(deal, milestone.id, decision.value)
        target = require_transition(MILESTONE_TRANSITIONS, milestone.id, decision.value, milestone.status)
        self._require_feedback(decision, feedback)

        now = self._clock()
        history = list(milestone.feedback_history)
        if feedback and feedback.strip():
            history.append(
                FeedbackEntry(
                    submission_version=milestone.current_submission_version,
                    decision=decision,
                    comment=feedback.strip(),
                    reviewer_id=actor.id,
                    created_at=now,
                )
            )
        update = {
            "status": target,
            "previous_status": milestone.status,
            "feedback_history": history,
            "version": milestone.version + 1,
        }
        if decision is ReviewDecision.APPROVE:
            update["approved_at"] = now
        updated = milestone.model_copy(update=update)
        self.deals.save_milestone(updated, expected_version)
        logger.info("Milestone %s %s by %s", milestone.id, target.value.lower(), actor.id)

        if decision is ReviewDecision.APPROVE:
            await release_quietly(self.payments, deal.id, milestone.id, amount_cents(milestone.amount))
            self._complete_if_done(deal.id)
        await self._notify(
            deal.creator_id,
            f"milestone_{target.value.lower()}",
            {"dealId": deal.id, "milestoneId": milestone.id, "feedback": feedback},
        )
        return updated

    def _complete_if_done(self, deal_id: str) -> Optional[Deal]:
        """Mark the deal Completed once every milestone is Approved."""
        for _ in range(_COMPLETION_ATTEMPTS):
            deal = self._load_deal(deal_id)
            if deal.status is not DealStatus.ACTIVE:
                return deal
            if not all(m.status is MilestoneStatus.APPROVED for m in deal.milestones):
                return deal
            try:
                completed = self._commit_deal(deal, deal.version, status=DealStatus.COMPLETED)
            except StaleDealVersion:
                continue
            logger.info("Deal %s completed", deal_id)
            return completed
        logger.warning("Could not mark deal %s completed after %d attempts", deal_id, _COMPLETION_ATTEMPTS)
        return None

    # ── Offer content gate ───────────────────────────────────────────────

    async def submit_offer_content(
        self,
        deal_id: str,
        actor: Actor,
        files: Sequence[LocalFile],
        expected_version: int,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_session: Optional[SessionCallback] = None,
    ) -> Deal:
        """Pre-production content for marketer approval. Allowed from NotSubmitted or RevisionRequired."""
        deal = self._load_deal(deal_id)
        self._check_deal_version(deal, expected_version)
        self._require_party(deal, actor, ActorRole.CREATOR, "submit_offer_content")
        self._require_active(deal, deal.id, "submit_offer_content")
        gate = deal.offer_content
        target = require_transition(CONTENT_TRANSITIONS, deal.id, "submit", gate.status)
        if not files:
            raise ValidationError(["Offer content needs at least one file"])

        stored = await collect_evidence(
            self.pipeline,
            deal.id,
            files,
            self.settings.deliverables,
            on_progress=on_progress,
            on_session=on_session,
        )
        submission = ContentSubmission(
            version=len(gate.submissions) + 1,
            attachments=stored,
            submitted_by=actor.id,
            submitted_at=self._clock(),
        )
        new_gate = gate.model_copy(
            update={"status": target, "submissions": [*gate.submissions, submission]}
        )
        updated = self._commit_deal(deal, expected_version, offer_content=new_gate)
        logger.info("Offer content v%d submitted for deal %s", submission.version, deal.id)
        await self._notify(
            deal.marketer_id,
            "offer_content_submitted",
            {"dealId": deal.id, "submissionVersion": submission.version},
        )
        return updated

    async def review_offer_content(
        self,
        deal_id: str,
        actor: Actor,
        decision: ReviewDecision,
        expected_version: int,
        feedback: Optional[str] = None,
    ) -> Deal:
        """Approve the content, or request a revision (feedback required)."""
        decision = ReviewDecision(decision)
        deal = self._load_deal(deal_id)
        self._check_deal_version(deal, expected_version)
        self._require_party(deal, actor, ActorRole.MARKETER, "review_offer_content")
        gate = deal.offer_content
        target = require_transition(CONTENT_TRANSITIONS, deal.id, decision.value, gate.status)
        self._require_feedback(decision, feedback)

        entries = list(gate.feedback)
        if feedback and feedback.strip():
            entries.append(
                FeedbackEntry(
                    submission_version=len(gate.submissions),
                    decision=decision,
                    comment=feedback.strip(),
                    reviewer_id=actor.id,
                    created_at=self._clock(),
                )
            )
        updated = self._commit_deal(
            deal, expected_version, offer_content=gate.model_copy(update={"status": target, "feedback": entries})
        )
        logger.info("Offer content for deal %s: %s", deal.id, target.value)
        await self._notify(
            deal.creator_id,
            "offer_content_reviewed",
            {"dealId": deal.id, "status": target.value, "feedback": feedback},
        )
        return updated

    # ── Proofs ───────────────────────────────────────────────────────────

    async def submit_proof(
        self,
        deal_id: str,
        actor: Actor,
        files: Sequence[LocalFile] = (),
        social_links: Sequence[str] = (),
        *,
        expected_version: int,
        on_progress: Optional[ProgressCallback] = None,
        on_session: Optional[SessionCallback] = None,
    ) -> Deal:
        deal = self._load_deal(deal_id)
        self._check_deal_version(deal, expected_version)
        self._require_party(deal, actor, ActorRole.CREATOR, "submit_proof")
        self._require_active(deal, deal.id, "submit_proof")
        links = validate_social_links(social_links)
        if not files and not links:
            raise ValidationError(["At least one file or social link is required"])

        stored = await collect_evidence(
            self.pipeline,
            deal.id,
            files,
            self.settings.proofs,
            on_progress=on_progress,
            on_session=on_session,
        )
        proof = ProofSubmission(
            id=f"{deal.id}-p{len(deal.proofs) + 1}",
            attachments=stored,
            social_links=links,
            submitted_by=actor.id,
            submitted_at=self._clock(),
        )
        updated = self._commit_deal(deal, expected_version, proofs=[*deal.proofs, proof])
        logger.info("Proof %s submitted for deal %s", proof.id, deal.id)
        await self._notify(deal.marketer_id, "proof_submitted", {"dealId": deal.id, "proofId": proof.id})
        return updated

    async def review_proof(
        self,
        deal_id: str,
        proof_id: str,
        actor: Actor,
        decision: ReviewDecision,
        expected_version: int,
        feedback: Optional[str] = None,
    ) -> Deal:
        decision = ReviewDecision(decision)
        deal = self._load_deal(deal_id)
        self._check_deal_version(deal, expected_version)
        self._require_party(deal, actor, ActorRole.MARKETER, "review_proof")
        index = next((i for i, p in enumerate(deal.proofs) if p.id == proof_id), None)
        if index is None:
            raise NotFound("Proof", proof_id)
        proof = deal.proofs[index]
        target = require_transition(PROOF_TRANSITIONS, proof.id, decision.value, proof.status)
        self._require_feedback(decision, feedback)

        now = self._clock()
        entries = list(proof.feedback)
        if feedback and feedback.strip():
            entries.append(
                FeedbackEntry(
                    submission_version=index + 1,
                    decision=decision,
                    comment=feedback.strip(),
                    reviewer_id=actor.id,
                    created_at=now,
                )
            )
        update = {"status": target, "feedback": entries}
        if decision is ReviewDecision.APPROVE:
            update["approved_at"] = now
        proofs = list(deal.proofs)
        proofs[index] = proof.model_copy(update=update)
        updated = self._commit_deal(deal, expected_version, proofs=proofs)
        logger.info("Proof %s of deal %s: %s", proof.id, deal.id, target.value)
        await self._notify(
            deal.creator_id,
            "proof_reviewed",
            {"dealId": deal.id, "proofId": proof.id, "status": target.value},
        )
        return updated
