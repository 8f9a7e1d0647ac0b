"""
Offer Lifecycle Service

Manages offer status transitions with:
  - Transition validation (OFFER_TRANSITIONS)
  - Party checks (owner edits and sends, recipient responds)
  - Optimistic concurrency (caller supplies the version it last observed)
  - NegotiationEvent ledger entries for Sent/Countered/Accepted/Rejected/Expired

Draft -> Sent -> {Accepted, Rejected, Expired}; a counter keeps the offer Sent
and flips which party is the recipient.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

import httpx
from pydantic import BaseModel

from collab_deals.collaborators import Notifier, PaymentGateway, notify_quietly
from collab_deals.config import CollabSettings
from collab_deals.errors import (
    AttachmentsIncomplete,
    IllegalTransition,
    NotFound,
    NotPermitted,
    PartialFailure,
    PaymentFailed,
    StaleOfferVersion,
    StaleVersion,
    ValidationError,
)
from collab_deals.models.actor import SYSTEM_ACTOR, Actor, ActorRole
from collab_deals.models.deal import Deal
from collab_deals.models.events import NegotiationAction, NegotiationEvent
from collab_deals.models.offer import MilestoneShare, Offer, OfferDraft, OfferStatus, OfferTerms
from collab_deals.models.upload import FileStatus, LocalFile, UploadedFile
from collab_deals.store.deal_store import DealStore
from collab_deals.store.history_store import NegotiationHistory
from collab_deals.store.offer_store import OfferStore
from collab_deals.uploads.pipeline import ProgressCallback, UploadPipeline

from .derivation import derive_deal
from .evidence import SessionCallback, collect_evidence
from .rules import (
    OFFER_TRANSITIONS,
    apply_breakdown_rule,
    require_transition,
    validate_draft,
    validate_for_send,
)

logger = logging.getLogger(__name__)

_RESPONSE_ACTIONS = {
    "accept": NegotiationAction.ACCEPTED,
    "reject": NegotiationAction.REJECTED,
    "counter": NegotiationAction.COUNTERED,
}


class RespondResult(BaseModel):
    """Outcome of respond(): the updated offer and, on accept, the created deal."""

    offer: Offer
    deal: Optional[Deal] = None


class OfferLifecycle:
    def __init__(
        self,
        offers: OfferStore,
        history: NegotiationHistory,
        deals: DealStore,
        pipeline: UploadPipeline,
        payments: PaymentGateway,
        notifier: Notifier,
        settings: Optional[CollabSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.offers = offers
        self.history = history
        self.deals = deals
        self.pipeline = pipeline
        self.payments = payments
        self.notifier = notifier
        self.settings = settings or CollabSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── Helpers ──────────────────────────────────────────────────────────

    def _load(self, offer_id: str) -> Offer:
        offer = self.offers.get(offer_id)
        if offer is None or offer.deleted_at is not None:
            raise NotFound("Offer", offer_id)
        return offer

    @staticmethod
    def _check_version(offer: Offer, expected_version: Optional[int]) -> None:
        if expected_version != offer.version:
            raise StaleOfferVersion(offer.id, expected_version, offer.version)

    @staticmethod
    def _require_owner(offer: Offer, actor: Actor, action: str) -> None:
        if actor.id != offer.owner_id or actor.role is not offer.owner_role:
            raise NotPermitted(actor.id, action, "only the offer's owner may do this")

    @staticmethod
    def _require_recipient(offer: Offer, actor: Actor, action: str) -> None:
        recipient = offer.recipient_role
        if recipient is None or actor.role is not recipient or actor.id != offer.party_id(recipient):
            raise NotPermitted(actor.id, action, "only the recipient of the offer may respond")

    def _commit(self, offer: Offer, expected_version: int, **update) -> Offer:
        updated = offer.model_copy(
            update={**update, "version": offer.version + 1, "updated_at": self._clock()}
        )
        return self.offers.save(updated, expected_version)

    def _transition(
        self,
        offer: Offer,
        expected_version: int,
        action: NegotiationAction,
        actor: Actor,
        *,
        previous_terms: Optional[OfferTerms] = None,
        note: Optional[str] = None,
        create_deal: bool = False,
        **update,
    ) -> tuple[Offer, Optional[Deal]]:
        """
        Commit the offer update, its NegotiationEvent and (on accept) the derived deal
        in one SQLite transaction. Any failure leaves all three unwritten.
        The stores must share one database file.
        """
        updated = offer.model_copy(
            update={**update, "version": offer.version + 1, "updated_at": self._clock()}
        )
        event = NegotiationEvent(
            offer_id=updated.id,
            sequence=updated.version,
            action=action,
            actor_id=actor.id,
            actor_role=actor.role,
            previous_terms=previous_terms,
            new_terms=updated.terms,
            note=note,
            timestamp=updated.updated_at,
        )
        deal = derive_deal(updated, updated.updated_at) if create_deal else None
        with self.offers.transaction() as conn:
            self.offers.save(updated, expected_version, conn)
            self.history.append(event, conn)
            if deal is not None:
                self.deals.create(deal, conn)
        return updated, deal

    async def _notify(self, offer: Offer, user_id: str, event_type: str) -> None:
        await notify_quietly(
            self.notifier,
            user_id,
            event_type,
            {
                "offerId": offer.id,
                "offerName": offer.offer_name,
                "status": offer.status.value,
                "version": offer.version,
            },
        )

    @staticmethod
    def _merge_attachments(
        existing: Sequence[UploadedFile], removed: Sequence[str], new: Sequence[UploadedFile]
    ) -> list[UploadedFile]:
        """Drop removed tokens; a new file replaces an existing reference with the same token."""
        merged = [a for a in existing if a.client_token not in set(removed)]
        index = {a.client_token: i for i, a in enumerate(merged)}
        for f in new:
            if f.client_token in index:
                merged[index[f.client_token]] = f
            else:
                index[f.client_token] = len(merged)
                merged.append(f)
        return merged

    # ── Draft editing ────────────────────────────────────────────────────

    async def save_draft(
        self,
        offer_id: Optional[str],
        actor: Actor,
        draft: OfferDraft,
        files: Sequence[LocalFile] = (),
        *,
        expected_version: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Offer:
        """
        Create or update a Draft. Terms that are set must be valid; completeness is
        only enforced at send. Attachments that fail to upload are kept as Failed
        references so the caller can retry them by token; send refuses until they are Stored.
        """
        party_ids = {ActorRole.CREATOR: draft.creator_id, ActorRole.MARKETER: draft.marketer_id}
        if actor.id != party_ids.get(actor.role):
            raise NotPermitted(actor.id, "save_draft", "actor is not a party to this offer")

        existing: Optional[Offer] = None
        if offer_id is not None:
            existing = self._load(offer_id)
            self._check_version(existing, expected_version)
            self._require_owner(existing, actor, "save_draft")
            require_transition(OFFER_TRANSITIONS, existing.id, "save_draft", existing.status)
            if (draft.creator_id, draft.marketer_id) != (existing.creator_id, existing.marketer_id):
                raise ValidationError(["Offer parties cannot change"])

        validate_draft(
            draft.terms,
            self.settings.min_offer_amount,
            self.settings.max_offer_amount,
            draft.milestone_breakdown,
        )

        kept = self._merge_attachments(existing.attachments if existing else [], draft.remove_attachments, [])
        incoming_tokens = {f.client_token for f in files if f.client_token}
        remaining = [a for a in kept if a.client_token not in incoming_tokens]
        limit = self.settings.offer_attachments.max_files
        if len(remaining) + len(files) > limit:
            raise ValidationError([f"An offer can carry at most {limit} attachments"])

        uploaded: list[UploadedFile] = []
        if files:
            session = await self.pipeline.begin(
                files, self.settings.offer_attachments, on_progress=on_progress
            )
            try:
                await session.wait()
            except PartialFailure as e:
                logger.warning("Draft attachments incomplete: %s", e)
            uploaded = session.files
        attachments = self._merge_attachments(kept, [], uploaded)

        fields = dict(
            offer_name=draft.offer_name,
            offer_type=draft.offer_type,
            terms=draft.terms,
            notes=draft.notes,
            attachments=attachments,
            agreed_to_terms=draft.agreed_to_terms,
            requires_content_approval=draft.requires_content_approval,
            milestone_breakdown=draft.milestone_breakdown,
        )

        if existing is None:
            now = self._clock()
            offer = Offer(
                id=uuid.uuid4().hex,
                creator_id=draft.creator_id,
                marketer_id=draft.marketer_id,
                owner_id=actor.id,
                owner_role=actor.role,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self.offers.create(offer)
            logger.info("Draft offer %s created by %s", offer.id, actor.id)
            return offer

        offer = self._commit(existing, existing.version, **fields)
        logger.info("Draft offer %s saved (version %d)", offer.id, offer.version)
        return offer

    async def attach_files(
        self,
        offer_id: str,
        actor: Actor,
        files: Sequence[LocalFile],
        expected_version: int,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_session: Optional[SessionCallback] = None,
    ) -> Offer:
        """Add attachments to a Draft. Nothing is recorded unless every file is Stored."""
        offer = self._load(offer_id)
        self._check_version(offer, expected_version)
        self._require_owner(offer, actor, "attach_files")
        require_transition(OFFER_TRANSITIONS, offer.id, "attach_files", offer.status)
        if not files:
            raise ValidationError(["No files to attach"])
        limit = self.settings.offer_attachments.max_files
        if len(offer.attachments) + len(files) > limit:
            raise ValidationError([f"An offer can carry at most {limit} attachments"])

        stored = await collect_evidence(
            self.pipeline,
            offer.id,
            files,
            self.settings.offer_attachments,
            on_progress=on_progress,
            on_session=on_session,
        )
        updated = self._commit(
            offer, expected_version, attachments=self._merge_attachments(offer.attachments, [], stored)
        )
        logger.info("Attached %d file(s) to offer %s", len(stored), offer.id)
        return updated

    # ── Transitions ──────────────────────────────────────────────────────

    async def send(self, offer_id: str, actor: Actor, expected_version: int) -> Offer:
        """
        Draft -> Sent. Checks run before any side effect, in order: version, owner,
        status, terms, attachments. Payment is authorized last so a doomed send is never charged.
        """
        offer = self._load(offer_id)
        self._check_version(offer, expected_version)
        self._require_owner(offer, actor, "send")
        require_transition(OFFER_TRANSITIONS, offer.id, "send", offer.status)
        validate_for_send(offer, self.settings.min_offer_amount, self.settings.max_offer_amount)

        pending = [a.client_token for a in offer.attachments if a.status is not FileStatus.STORED]
        if pending:
            raise AttachmentsIncomplete(offer.id, pending)

        try:
            auth = await self.payments.authorize(offer.id, self.settings.authorization_fee_cents)
        except httpx.HTTPStatusError as e:
            raise PaymentFailed(offer.id, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise PaymentFailed(offer.id, str(e)) from e
        if not auth.authorized:
            logger.info("Payment authorization declined for offer %s: %s", offer.id, auth.reason)
            raise PaymentFailed(offer.id, auth.reason)

        sent, _ = self._transition(
            offer,
            expected_version,
            NegotiationAction.SENT,
            actor,
            status=OfferStatus.SENT,
            sender_role=actor.role,
            sent_at=self._clock(),
        )
        logger.info("Offer %s sent by %s (version %d)", sent.id, actor.id, sent.version)
        await self._notify(sent, sent.party_id(actor.role.counterpart), "offer_sent")
        return sent

    async def respond(
        self,
        offer_id: str,
        actor: Actor,
        action: str,
        expected_version: int,
        *,
        counter_terms: Optional[OfferTerms] = None,
        counter_breakdown: Optional[list[MilestoneShare]] = None,
        reason: Optional[str] = None,
    ) -> RespondResult:
        """
        Recipient's answer to a Sent offer: accept, reject or counter.

        accept  -> Accepted, deal and milestones created from the current terms
        reject  -> Rejected, optional reason kept on the event
        counter -> stays Sent with counter_terms replacing every negotiable field;
                   the responding party becomes the sender. counter_breakdown replaces
                   the milestone breakdown; without one, a breakdown that no longer
                   fits the countered deliverables is dropped
        """
        offer = self._load(offer_id)
        if action not in _RESPONSE_ACTIONS:
            raise IllegalTransition(offer.id, action, offer.status.value, "not a response action")
        self._check_version(offer, expected_version)
        target = require_transition(OFFER_TRANSITIONS, offer.id, action, offer.status)
        self._require_recipient(offer, actor, action)

        if action == "counter":
            countered = await self._counter(offer, actor, expected_version, counter_terms, counter_breakdown)
            return RespondResult(offer=countered)

        updated, deal = self._transition(
            offer,
            expected_version,
            _RESPONSE_ACTIONS[action],
            actor,
            note=reason,
            create_deal=action == "accept",
            status=target,
        )
        logger.info("Offer %s %s by %s", updated.id, target.value.lower(), actor.id)
        if deal is not None:
            logger.info("Deal %s created with %d milestone(s)", deal.id, len(deal.milestones))
        await self._notify(updated, updated.party_id(actor.role.counterpart), f"offer_{action}ed")
        return RespondResult(offer=updated, deal=deal)

    async def _counter(
        self,
        offer: Offer,
        actor: Actor,
        expected_version: int,
        counter_terms: Optional[OfferTerms],
        counter_breakdown: Optional[list[MilestoneShare]],
    ) -> Offer:
        if counter_terms is None:
            raise ValidationError(["Counter terms are required"])
        breakdown = counter_breakdown
        if breakdown is None and offer.milestone_breakdown:
            fits, explanation = apply_breakdown_rule(offer.milestone_breakdown, counter_terms, True)
            if fits:
                breakdown = offer.milestone_breakdown
            else:
                logger.info("Dropping milestone breakdown of offer %s on counter: %s", offer.id, explanation)
        candidate = offer.model_copy(update={"terms": counter_terms, "milestone_breakdown": breakdown})
        validate_for_send(candidate, self.settings.min_offer_amount, self.settings.max_offer_amount)

        previous = offer.terms
        updated, _ = self._transition(
            offer,
            expected_version,
            NegotiationAction.COUNTERED,
            actor,
            previous_terms=previous,
            terms=counter_terms,
            milestone_breakdown=breakdown,
            sender_role=actor.role,
            sent_at=self._clock(),
            rounds=offer.rounds + 1,
        )
        logger.info("Offer %s countered by %s (round %d)", updated.id, actor.id, updated.rounds)
        await self._notify(updated, updated.party_id(actor.role.counterpart), "offer_countered")
        return updated

    async def accept(self, offer_id: str, actor: Actor, expected_version: int) -> RespondResult:
        return await self.respond(offer_id, actor, "accept", expected_version)

    async def reject(
        self, offer_id: str, actor: Actor, expected_version: int, reason: Optional[str] = None
    ) -> RespondResult:
        return await self.respond(offer_id, actor, "reject", expected_version, reason=reason)

    async def counter(
        self,
        offer_id: str,
        actor: Actor,
        expected_version: int,
        counter_terms: OfferTerms,
        counter_breakdown: Optional[list[MilestoneShare]] = None,
    ) -> RespondResult:
        return await self.respond(
            offer_id,
            actor,
            "counter",
            expected_version,
            counter_terms=counter_terms,
            counter_breakdown=counter_breakdown,
        )

    async def expire(self, offer_id: str, now: Optional[datetime] = None) -> Offer:
        """
        System transition Sent -> Expired once the TTL since the last Sent has passed.
        Terminal or deleted offers are returned unchanged.
        """
        offer = self.offers.get(offer_id)
        if offer is None:
            raise NotFound("Offer", offer_id)
        if offer.is_terminal or offer.deleted_at is not None:
            return offer
        require_transition(OFFER_TRANSITIONS, offer.id, "expire", offer.status)

        now = now or self._clock()
        ttl = timedelta(days=self.settings.offer_ttl_days)
        if offer.sent_at is None or now - offer.sent_at <= ttl:
            raise IllegalTransition(offer.id, "expire", offer.status.value, "offer has not outlived its TTL")

        try:
            expired, _ = self._transition(
                offer, offer.version, NegotiationAction.EXPIRED, SYSTEM_ACTOR, status=OfferStatus.EXPIRED
            )
        except StaleOfferVersion:
            current = self.offers.get(offer.id)
            if current is not None and current.is_terminal:
                return current
            raise
        logger.info("Offer %s expired", expired.id)
        await self._notify(expired, expired.creator_id, "offer_expired")
        await self._notify(expired, expired.marketer_id, "offer_expired")
        return expired

    async def expire_stale(self, now: Optional[datetime] = None) -> list[Offer]:
        """Scheduler sweep: expire every Sent offer older than the TTL."""
        now = now or self._clock()
        cutoff = now - timedelta(days=self.settings.offer_ttl_days)
        expired = []
        for offer in self.offers.list_sent_before(cutoff):
            try:
                result = await self.expire(offer.id, now)
            except (StaleVersion, IllegalTransition) as e:
                logger.warning("Skipping expiry of offer %s: %s", offer.id, e)
                continue
            if result.status is OfferStatus.EXPIRED:
                expired.append(result)
        return expired

    async def delete(self, offer_id: str, actor: Actor, expected_version: int) -> Offer:
        """Soft delete by the owner while Draft or Sent. No negotiation event is recorded."""
        offer = self._load(offer_id)
        self._check_version(offer, expected_version)
        self._require_owner(offer, actor, "delete")
        require_transition(OFFER_TRANSITIONS, offer.id, "delete", offer.status)

        deleted = self._commit(offer, expected_version, deleted_at=self._clock())
        logger.info("Offer %s deleted by %s", deleted.id, actor.id)
        if deleted.status is OfferStatus.SENT:
            await self._notify(deleted, deleted.party_id(actor.role.counterpart), "offer_withdrawn")
        return deleted
