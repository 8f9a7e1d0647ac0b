"""Local storage for offers, deals, negotiation history and social links."""

from collab_deals.store.deal_store import DealStore
from collab_deals.store.history_store import NegotiationHistory
from collab_deals.store.offer_store import OfferStore
from collab_deals.store.social_links import SocialLink, SocialLinkRegistry

__all__ = [
    "DealStore",
    "NegotiationHistory",
    "OfferStore",
    "SocialLink",
    "SocialLinkRegistry",
]
