"""Main CLI entry point."""

import argparse
import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse args and dispatch to subcommands."""
    parser = argparse.ArgumentParser(
        prog="collab-deals", description="Inspect offers and deals, replay negotiations, expire stale offers"
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to SQLite database (default: settings db_path)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings YAML",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # offer
    offer_parser = subparsers.add_parser("offer", help="Inspect or expire offers")
    offer_sub = offer_parser.add_subparsers(dest="action", required=True)
    show_parser = offer_sub.add_parser("show", help="Show one offer")
    show_parser.add_argument("offer_id")
    list_parser = offer_sub.add_parser("list", help="List offers in one status, most recently updated first")
    list_parser.add_argument(
        "--status",
        type=str,
        default="Sent",
        help="Offer status: Draft, Sent, Accepted, Rejected or Expired (default: Sent)",
    )
    list_parser.add_argument("--include-deleted", action="store_true", help="Include soft-deleted offers")
    history_parser = offer_sub.add_parser("history", help="Negotiation events and replayed terms")
    history_parser.add_argument("offer_id")
    expire_parser = offer_sub.add_parser("expire", help="Expire Sent offers older than the TTL")
    expire_parser.add_argument(
        "--now",
        type=str,
        default=None,
        help="Reference time (ISO 8601, default: current UTC time)",
    )

    # deal
    deal_parser = subparsers.add_parser("deal", help="Inspect deals")
    deal_sub = deal_parser.add_subparsers(dest="action", required=True)
    deal_show = deal_sub.add_parser("show", help="Show a deal with its milestones")
    deal_show.add_argument("deal_id")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "offer" and args.action == "show":
        _run_offer_show(args)
    elif args.command == "offer" and args.action == "list":
        _run_offer_list(args)
    elif args.command == "offer" and args.action == "history":
        _run_offer_history(args)
    elif args.command == "offer" and args.action == "expire":
        _run_offer_expire(args)
    elif args.command == "deal":
        _run_deal_show(args)
    else:
        parser.print_help()


def _settings(args: argparse.Namespace):
    from collab_deals.config import CollabSettings

    settings = CollabSettings.load(args.config)
    if args.db is not None:
        settings = settings.model_copy(update={"db_path": args.db})
    return settings


def _dump(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run_offer_show(args: argparse.Namespace) -> None:
    """Run offer show command."""
    from collab_deals.store import OfferStore

    offer = OfferStore(_settings(args).db_path).get(args.offer_id)
    if offer is None:
        raise SystemExit(f"Offer not found: {args.offer_id}")
    _dump(offer.model_dump(mode="json"))


def _run_offer_list(args: argparse.Namespace) -> None:
    """Run offer list command."""
    from collab_deals.models import OfferStatus
    from collab_deals.store import OfferStore

    try:
        status = OfferStatus(args.status.capitalize())
    except ValueError:
        raise SystemExit(f"Unknown offer status: {args.status}")
    offers = OfferStore(_settings(args).db_path).list_by_status(status, include_deleted=args.include_deleted)
    _dump(
        [
            {
                "id": o.id,
                "offer_name": o.offer_name,
                "status": o.status.value,
                "version": o.version,
                "deleted": o.deleted_at is not None,
                "updated_at": o.updated_at.isoformat(),
            }
            for o in offers
        ]
    )


def _run_offer_history(args: argparse.Namespace) -> None:
    """Run offer history command: events, replayed terms and divergence from the stored offer."""
    from collab_deals.history import replay
    from collab_deals.models import OfferStatus
    from collab_deals.store import NegotiationHistory, OfferStore

    settings = _settings(args)
    offer = OfferStore(settings.db_path).get(args.offer_id)
    if offer is None:
        raise SystemExit(f"Offer not found: {args.offer_id}")
    events = NegotiationHistory(settings.db_path).list_for(offer.id)

    # A draft has no events yet; its own terms are the starting point
    initial = offer.terms if offer.status is OfferStatus.DRAFT else None
    state = replay(events, initial)
    differences = state.differences(offer)
    _dump(
        {
            "offer_id": offer.id,
            "events": [e.model_dump(mode="json") for e in events],
            "replayed": state.model_dump(mode="json"),
            "diverges": bool(differences),
            "differences": differences,
        }
    )


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise SystemExit("Invalid --now format. Use ISO 8601, e.g. 2026-01-31T12:00:00+00:00.")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _run_offer_expire(args: argparse.Namespace) -> None:
    """Run offer expire command."""
    from collab_deals.collaborators import (
        HttpNotifier,
        HttpPaymentGateway,
        LogNotifier,
        UnconfiguredPaymentGateway,
    )
    from collab_deals.lifecycle import OfferLifecycle
    from collab_deals.store import DealStore, NegotiationHistory, OfferStore
    from collab_deals.uploads import HttpUploadSink, LocalUploadSink, UploadPipeline

    settings = _settings(args)
    now = _parse_now(args.now)
    if settings.upload_url:
        sink = HttpUploadSink(settings.upload_url, timeout=settings.http_timeout)
    else:
        sink = LocalUploadSink(Path(settings.db_path).parent / "uploads")
    payments = (
        HttpPaymentGateway(settings.payments_url, timeout=settings.http_timeout)
        if settings.payments_url
        else UnconfiguredPaymentGateway()
    )
    notifier = (
        HttpNotifier(settings.notify_url, timeout=settings.http_timeout)
        if settings.notify_url
        else LogNotifier()
    )
    lifecycle = OfferLifecycle(
        OfferStore(settings.db_path),
        NegotiationHistory(settings.db_path),
        DealStore(settings.db_path),
        UploadPipeline(sink),
        payments,
        notifier,
        settings,
    )
    expired = asyncio.run(lifecycle.expire_stale(now))
    print(f"Expired {len(expired)} offer(s)")
    _dump([o.id for o in expired])


def _run_deal_show(args: argparse.Namespace) -> None:
    """Run deal show command."""
    from collab_deals.store import DealStore

    deal = DealStore(_settings(args).db_path).get(args.deal_id)
    if deal is None:
        raise SystemExit(f"Deal not found: {args.deal_id}")
    _dump(deal.model_dump(mode="json"))


if __name__ == "__main__":
    main()
