"""Tests for the collab-deals command line."""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from collab_deals.cli.main import main
from collab_deals.lifecycle.derivation import derive_deal
from collab_deals.models import ActorRole, NegotiationAction, NegotiationEvent, Offer, OfferStatus, OfferTerms
from collab_deals.store import DealStore, NegotiationHistory, OfferStore

SENT_AT = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "COLLAB_DEALS_DB",
        "COLLAB_DEALS_UPLOAD_URL",
        "COLLAB_DEALS_PAYMENTS_URL",
        "COLLAB_DEALS_NOTIFY_URL",
        "COLLAB_DEALS_OFFER_TTL_DAYS",
    ):
        monkeypatch.delenv(name, raising=False)


def _make_offer(offer_id: str = "o1", **kwargs) -> Offer:
    defaults = {
        "id": offer_id,
        "creator_id": "creator-1",
        "marketer_id": "marketer-1",
        "owner_id": "marketer-1",
        "owner_role": ActorRole.MARKETER,
        "offer_name": "Spring launch",
        "terms": OfferTerms(proposed_amount=Decimal("500"), deliverables=["instagram"], description="Two reels"),
        "status": OfferStatus.SENT,
        "sender_role": ActorRole.MARKETER,
        "sent_at": SENT_AT,
        "version": 2,
    }
    defaults.update(kwargs)
    return Offer(**defaults)


def _seed_sent_offer(db: Path, offer_id: str = "o1", **kwargs) -> Offer:
    offer = OfferStore(db).create(_make_offer(offer_id, **kwargs))
    NegotiationHistory(db).append(
        NegotiationEvent(
            offer_id=offer.id,
            sequence=2,
            action=NegotiationAction.SENT,
            actor_id="marketer-1",
            actor_role=ActorRole.MARKETER,
            new_terms=offer.terms,
            timestamp=offer.sent_at,
        )
    )
    return offer


class TestOfferCommands:
    def test_show(self, temp_db: Path, capsys: pytest.CaptureFixture) -> None:
        _seed_sent_offer(temp_db)
        main(["--db", str(temp_db), "offer", "show", "o1"])
        data = json.loads(capsys.readouterr().out)
        assert data["id"] == "o1"
        assert data["status"] == "Sent"
        assert data["terms"]["proposed_amount"] == "500"

    def test_show_missing(self, temp_db: Path) -> None:
        with pytest.raises(SystemExit):
            main(["--db", str(temp_db), "offer", "show", "missing"])

    def test_list_by_status(self, temp_db: Path, capsys: pytest.CaptureFixture) -> None:
        store = OfferStore(temp_db)
        store.create(_make_offer("older", updated_at=SENT_AT))
        store.create(_make_offer("newer", updated_at=SENT_AT + timedelta(hours=1)))
        store.create(_make_offer("withdrawn", deleted_at=SENT_AT))
        store.create(_make_offer("draft", status=OfferStatus.DRAFT, sender_role=None, sent_at=None, version=1))

        main(["--db", str(temp_db), "offer", "list"])
        assert [o["id"] for o in json.loads(capsys.readouterr().out)] == ["newer", "older"]

        main(["--db", str(temp_db), "offer", "list", "--status", "sent", "--include-deleted"])
        listed = json.loads(capsys.readouterr().out)
        assert {o["id"] for o in listed} == {"newer", "older", "withdrawn"}
        assert [o["deleted"] for o in listed if o["id"] == "withdrawn"] == [True]

        main(["--db", str(temp_db), "offer", "list", "--status", "Draft"])
        assert [o["id"] for o in json.loads(capsys.readouterr().out)] == ["draft"]

    def test_list_unknown_status(self, temp_db: Path) -> None:
        with pytest.raises(SystemExit):
            main(["--db", str(temp_db), "offer", "list", "--status", "pending"])

    def test_history_replays_to_stored_offer(self, temp_db: Path, capsys: pytest.CaptureFixture) -> None:
        _seed_sent_offer(temp_db)
        main(["--db", str(temp_db), "offer", "history", "o1"])
        data = json.loads(capsys.readouterr().out)
        assert [e["action"] for e in data["events"]] == ["Sent"]
        assert data["replayed"]["status"] == "Sent"
        assert data["diverges"] is False
        assert data["differences"] == []

    def test_history_reports_divergence(self, temp_db: Path, capsys: pytest.CaptureFixture) -> None:
        _seed_sent_offer(temp_db)
        OfferStore(temp_db).save(
            _make_offer(terms=OfferTerms(proposed_amount=Decimal("900")), version=3),
            expected_version=2,
        )
        main(["--db", str(temp_db), "offer", "history", "o1"])
        data = json.loads(capsys.readouterr().out)
        assert data["diverges"] is True
        assert "terms" in data["differences"]

    def test_expire_with_reference_time(self, temp_db: Path, capsys: pytest.CaptureFixture) -> None:
        _seed_sent_offer(temp_db, "old")
        _seed_sent_offer(temp_db, "fresh", sent_at=SENT_AT + timedelta(days=6))
        now = (SENT_AT + timedelta(days=8)).isoformat()
        main(["--db", str(temp_db), "offer", "expire", "--now", now])

        out = capsys.readouterr().out
        assert out.startswith("Expired 1 offer(s)")
        assert json.loads(out.split("\n", 1)[1]) == ["old"]
        store = OfferStore(temp_db)
        assert store.get("old").status is OfferStatus.EXPIRED
        assert store.get("fresh").status is OfferStatus.SENT

    def test_expire_bad_time(self, temp_db: Path) -> None:
        with pytest.raises(SystemExit):
            main(["--db", str(temp_db), "offer", "expire", "--now", "yesterday"])


class TestDealCommands:
    def test_show(self, temp_db: Path, capsys: pytest.CaptureFixture) -> None:
        offer = _make_offer(status=OfferStatus.ACCEPTED)
        deal = DealStore(temp_db).create(derive_deal(offer, SENT_AT))
        main(["--db", str(temp_db), "deal", "show", deal.id])
        data = json.loads(capsys.readouterr().out)
        assert data["id"] == "deal-o1"
        assert [m["name"] for m in data["milestones"]] == ["Full Delivery"]

    def test_show_missing(self, temp_db: Path) -> None:
        with pytest.raises(SystemExit):
            main(["--db", str(temp_db), "deal", "show", "nope"])

    def test_config_file_db_path(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        db = tmp_path / "from-config.db"
        config = tmp_path / "settings.yaml"
        config.write_text(f"db_path: {db}\n")
        _seed_sent_offer(db)
        main(["--config", str(config), "offer", "show", "o1"])
        assert json.loads(capsys.readouterr().out)["id"] == "o1"
