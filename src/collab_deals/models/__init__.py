"""Data models for offers, deals, milestones, uploads and negotiation events."""

from collab_deals.models.actor import SYSTEM_ACTOR, Actor, ActorRole
from collab_deals.models.deal import (
    ContentGate,
    ContentStatus,
    ContentSubmission,
    Deal,
    DealStatus,
    FeedbackEntry,
    Milestone,
    MilestoneStatus,
    MilestoneSubmission,
    ProofStatus,
    ProofSubmission,
    ReviewDecision,
)
from collab_deals.models.events import NegotiationAction, NegotiationEvent
from collab_deals.models.offer import (
    TERMINAL_OFFER_STATUSES,
    MilestoneShare,
    Offer,
    OfferDraft,
    OfferStatus,
    OfferTerms,
    OfferType,
)
from collab_deals.models.upload import FileStatus, LocalFile, UploadConstraints, UploadedFile

__all__ = [
    "SYSTEM_ACTOR",
    "TERMINAL_OFFER_STATUSES",
    "Actor",
    "ActorRole",
    "ContentGate",
    "ContentStatus",
    "ContentSubmission",
    "Deal",
    "DealStatus",
    "FeedbackEntry",
    "FileStatus",
    "LocalFile",
    "Milestone",
    "MilestoneShare",
    "MilestoneStatus",
    "MilestoneSubmission",
    "NegotiationAction",
    "NegotiationEvent",
    "Offer",
    "OfferDraft",
    "OfferStatus",
    "OfferTerms",
    "OfferType",
    "ProofStatus",
    "ProofSubmission",
    "ReviewDecision",
    "UploadConstraints",
    "UploadedFile",
]
