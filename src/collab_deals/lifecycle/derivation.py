"""Pure derivation of a Deal and its milestones from an accepted offer snapshot."""

import hashlib
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from collab_deals.models.deal import Deal, Milestone
from collab_deals.models.offer import Offer

_CENTS = Decimal("0.01")

FULL_DELIVERY = "Full Delivery"


def deal_id_for(offer_id: str) -> str:
    return f"deal-{offer_id}"


def milestone_id_for(deal_id: str, position: int) -> str:
    return f"{deal_id}-m{position}"


def deal_number_for(offer_id: str) -> str:
    """Stable human-facing number, e.g. 'D-104233'."""
    digest = hashlib.sha256(offer_id.encode("utf-8")).hexdigest()
    return f"D-{int(digest[:8], 16) % 1_000_000:06d}"


def split_amount(amount: Decimal, percentages: list[Decimal]) -> list[Decimal]:
    """Split amount by percentage; the last share absorbs rounding so the parts sum exactly."""
    parts = [(amount * pct / 100).quantize(_CENTS, rounding=ROUND_HALF_UP) for pct in percentages[:-1]]
    parts.append(amount.quantize(_CENTS, rounding=ROUND_HALF_UP) - sum(parts, Decimal("0")))
    return parts


def derive_milestones(offer: Offer, deal_id: str) -> list[Milestone]:
    terms = offer.terms
    amount = terms.proposed_amount or Decimal("0")

    if not offer.milestone_breakdown:
        return [
            Milestone(
                id=milestone_id_for(deal_id, 1),
                deal_id=deal_id,
                position=1,
                name=FULL_DELIVERY,
                amount=amount.quantize(_CENTS, rounding=ROUND_HALF_UP),
                due_date=terms.desired_post_date,
                deliverables=list(terms.deliverables),
            )
        ]

    shares = offer.milestone_breakdown
    amounts = split_amount(amount, [s.percentage for s in shares])
    milestones = []
    for position, (share, part) in enumerate(zip(shares, amounts), start=1):
        is_last = position == len(shares)
        milestones.append(
            Milestone(
                id=milestone_id_for(deal_id, position),
                deal_id=deal_id,
                position=position,
                name=share.name,
                amount=part,
                due_date=terms.desired_post_date if is_last else terms.desired_review_date,
                deliverables=[d.lower() for d in share.deliverables],
            )
        )
    return milestones


def derive_deal(offer: Offer, accepted_at: datetime) -> Deal:
    """
    Same offer snapshot and timestamp always yield an identical Deal.
    The offer must carry the terms that were accepted.
    """
    deal_id = deal_id_for(offer.id)
    return Deal(
        id=deal_id,
        offer_id=offer.id,
        deal_number=deal_number_for(offer.id),
        deal_name=offer.offer_name,
        creator_id=offer.creator_id,
        marketer_id=offer.marketer_id,
        amount=offer.terms.proposed_amount or Decimal("0"),
        requires_content_approval=offer.requires_content_approval,
        milestones=derive_milestones(offer, deal_id),
        created_at=accepted_at,
        updated_at=accepted_at,
    )
