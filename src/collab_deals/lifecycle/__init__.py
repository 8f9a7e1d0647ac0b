"""Offer negotiation and deal milestone state machines."""

from .derivation import derive_deal
from .milestones import DealMilestoneLifecycle
from .offers import OfferLifecycle, RespondResult

__all__ = ["DealMilestoneLifecycle", "OfferLifecycle", "RespondResult", "derive_deal"]
