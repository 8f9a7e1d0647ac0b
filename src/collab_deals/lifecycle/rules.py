"""Transition tables and term validation rules.

Term rules each return (passed, explanation). ``required`` is False while an
offer is still a draft: missing fields are tolerated, but fields that are set
must already be valid.
"""

from decimal import Decimal
from typing import Optional, Sequence
from urllib.parse import urlparse

from collab_deals.errors import IllegalTransition, ValidationError
from collab_deals.models.deal import ContentStatus, MilestoneStatus, ProofStatus
from collab_deals.models.offer import MilestoneShare, Offer, OfferStatus, OfferTerms

MAX_MILESTONES = 4

OFFER_TRANSITIONS: dict[str, dict] = {
    "save_draft": {"from": [OfferStatus.DRAFT], "to": OfferStatus.DRAFT},
    "attach_files": {"from": [OfferStatus.DRAFT], "to": OfferStatus.DRAFT},
    "send": {"from": [OfferStatus.DRAFT], "to": OfferStatus.SENT},
    "counter": {"from": [OfferStatus.SENT], "to": OfferStatus.SENT},
    "accept": {"from": [OfferStatus.SENT], "to": OfferStatus.ACCEPTED},
    "reject": {"from": [OfferStatus.SENT], "to": OfferStatus.REJECTED},
    "expire": {"from": [OfferStatus.SENT], "to": OfferStatus.EXPIRED},
    "delete": {"from": [OfferStatus.DRAFT, OfferStatus.SENT], "to": None},
}

MILESTONE_TRANSITIONS: dict[str, dict] = {
    "submit": {"from": [MilestoneStatus.ASSIGNED], "to": MilestoneStatus.SUBMITTED},
    "resubmit": {"from": [MilestoneStatus.REJECTED], "to": MilestoneStatus.RESUBMITTED},
    "approve": {
        "from": [MilestoneStatus.SUBMITTED, MilestoneStatus.RESUBMITTED],
        "to": MilestoneStatus.APPROVED,
    },
    "reject": {
        "from": [MilestoneStatus.SUBMITTED, MilestoneStatus.RESUBMITTED],
        "to": MilestoneStatus.REJECTED,
    },
}

CONTENT_TRANSITIONS: dict[str, dict] = {
    "submit": {
        "from": [ContentStatus.NOT_SUBMITTED, ContentStatus.REVISION_REQUIRED],
        "to": ContentStatus.PENDING,
    },
    "approve": {"from": [ContentStatus.PENDING], "to": ContentStatus.APPROVED},
    "reject": {"from": [ContentStatus.PENDING], "to": ContentStatus.REVISION_REQUIRED},
}

PROOF_TRANSITIONS: dict[str, dict] = {
    "approve": {"from": [ProofStatus.PENDING_REVIEW], "to": ProofStatus.APPROVED},
    "reject": {"from": [ProofStatus.PENDING_REVIEW], "to": ProofStatus.REVISION_REQUIRED},
}


def validate_transition(table: dict[str, dict], action: str, current) -> dict:
    """
    Validate whether an action is valid for the current status.

    Returns:
        {"valid": bool, "from": status, "to": status|None, "reason": str|None}
    """
    rule = table.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None, "reason": f"Unknown action: {action}"}
    if current not in rule["from"]:
        return {
            "valid": False,
            "from": current,
            "to": rule["to"],
            "reason": f"Cannot '{action}' from status '{_label(current)}'",
        }
    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def require_transition(table: dict[str, dict], entity_id: str, action: str, current):
    """Return the target status or raise IllegalTransition."""
    result = validate_transition(table, action, current)
    if not result["valid"]:
        raise IllegalTransition(entity_id, action, _label(current), result["reason"])
    return result["to"]


def _label(status) -> str:
    return getattr(status, "value", str(status))


def apply_amount_rule(
    terms: OfferTerms, min_amount: Decimal, max_amount: Decimal, required: bool
) -> tuple[bool, str]:
    amount = terms.proposed_amount
    if amount is None:
        if required:
            return False, "Proposed amount is required"
        return True, "Amount not set yet"
    if amount < min_amount or amount > max_amount:
        return False, f"Proposed amount {amount} must be between {min_amount} and {max_amount}"
    return True, f"Amount {amount} within bounds"


def apply_date_order_rule(terms: OfferTerms, required: bool) -> tuple[bool, str]:
    review, post = terms.desired_review_date, terms.desired_post_date
    if review is None or post is None:
        if required:
            return False, "Desired review date and post date are required"
        return True, "Dates not fully set yet"
    if post < review:
        return False, f"Desired post date {post} is before review date {review}"
    return True, "Post date on or after review date"


def apply_deliverables_rule(terms: OfferTerms, required: bool) -> tuple[bool, str]:
    if required and not terms.deliverables:
        return False, "At least one deliverable is required"
    return True, f"{len(terms.deliverables)} deliverable(s)"


def apply_description_rule(terms: OfferTerms, required: bool) -> tuple[bool, str]:
    if required and not terms.description.strip():
        return False, "Description is required"
    return True, "Description ok"


def apply_breakdown_rule(
    breakdown: Optional[Sequence[MilestoneShare]], terms: OfferTerms, required: bool
) -> tuple[bool, str]:
    """Optional breakdown: 1-4 shares, positive percentages summing to 100."""
    if not breakdown:
        return True, "Single milestone"
    if len(breakdown) > MAX_MILESTONES:
        return False, f"At most {MAX_MILESTONES} milestones are allowed"
    if any(share.percentage <= 0 for share in breakdown):
        return False, "Milestone percentages must be positive"
    total = sum((share.percentage for share in breakdown), Decimal("0"))
    if total != Decimal("100"):
        return False, f"Milestone percentages sum to {total}, expected 100"
    if required:
        allowed = set(terms.deliverables)
        for share in breakdown:
            unknown = [d for d in share.deliverables if d.lower() not in allowed]
            if unknown:
                return False, f"Milestone '{share.name}' lists deliverables not in the offer: {unknown}"
    return True, f"{len(breakdown)} milestone(s)"


def apply_social_link_rule(url: str) -> tuple[bool, str]:
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False, f"Social link must be an absolute http(s) URL: {url!r}"
    return True, "Link ok"


def term_problems(
    terms: OfferTerms,
    min_amount: Decimal,
    max_amount: Decimal,
    *,
    required: bool,
    breakdown: Optional[Sequence[MilestoneShare]] = None,
) -> list[str]:
    """Run every term rule and collect the failing explanations."""
    results = [
        apply_amount_rule(terms, min_amount, max_amount, required),
        apply_date_order_rule(terms, required),
        apply_deliverables_rule(terms, required),
        apply_description_rule(terms, required),
        apply_breakdown_rule(breakdown, terms, required),
    ]
    return [explanation for passed, explanation in results if not passed]


def validate_draft(terms: OfferTerms, min_amount: Decimal, max_amount: Decimal, breakdown=None) -> None:
    problems = term_problems(terms, min_amount, max_amount, required=False, breakdown=breakdown)
    if problems:
        raise ValidationError(problems)


def validate_for_send(offer: Offer, min_amount: Decimal, max_amount: Decimal) -> None:
    """Full validation applied at send time and to every counter."""
    problems = term_problems(
        offer.terms,
        min_amount,
        max_amount,
        required=True,
        breakdown=offer.milestone_breakdown,
    )
    if not offer.agreed_to_terms:
        problems.append("Terms and conditions must be agreed to")
    if problems:
        raise ValidationError(problems)


def validate_social_links(links: Sequence[str]) -> list[str]:
    """Return cleaned links or raise ValidationError listing every bad one."""
    problems = []
    cleaned = []
    for url in links:
        passed, explanation = apply_social_link_rule(url)
        if passed:
            cleaned.append(url.strip())
        else:
            problems.append(explanation)
    if problems:
        raise ValidationError(problems)
    return cleaned
