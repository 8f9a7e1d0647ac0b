"""Offer negotiation, deal milestones and evidence submission for creator collaborations."""

from collab_deals.config import CollabSettings
from collab_deals.lifecycle import DealMilestoneLifecycle, OfferLifecycle
from collab_deals.router import SubmissionMode, SubmissionRequest, SubmissionRouter
from collab_deals.uploads import UploadPipeline

__all__ = [
    "CollabSettings",
    "DealMilestoneLifecycle",
    "OfferLifecycle",
    "SubmissionMode",
    "SubmissionRequest",
    "SubmissionRouter",
    "UploadPipeline",
]
