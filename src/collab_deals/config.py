"""Settings for lifecycles, upload constraints and collaborator endpoints."""

import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

try:
    import yaml
except ModuleNotFoundError as e:
    raise ModuleNotFoundError(
        "PyYAML is required for settings loading. Run: pip install -e ."
    ) from e
from pydantic import BaseModel, Field

from collab_deals.models.upload import UploadConstraints

_IMAGE_DOC_EXTENSIONS = ["pdf", "gif", "jpeg", "jpg", "png", "psd"]

_MB = 1024 * 1024


class CollabSettings(BaseModel):
    """Runtime settings. Loaded from YAML, then overridden by COLLAB_DEALS_* env vars."""

    db_path: Path = Path("collab_deals.db")

    min_offer_amount: Decimal = Decimal("100")
    max_offer_amount: Decimal = Decimal("500000")
    authorization_fee_cents: int = Field(
        default=100,
        description="One-time charge authorized on send; never the offer amount",
    )
    offer_ttl_days: int = 7
    currency: str = "USD"

    offer_attachments: UploadConstraints = Field(
        default_factory=lambda: UploadConstraints(
            max_files=10,
            max_file_bytes=10 * _MB,
            allowed_extensions=list(_IMAGE_DOC_EXTENSIONS),
        )
    )
    deliverables: UploadConstraints = Field(
        default_factory=lambda: UploadConstraints(
            max_files=10,
            max_file_bytes=200 * _MB,
            allowed_extensions=_IMAGE_DOC_EXTENSIONS + ["mp4", "mov"],
        )
    )
    proofs: UploadConstraints = Field(
        default_factory=lambda: UploadConstraints(
            max_files=10,
            max_file_bytes=50 * _MB,
            allowed_extensions=_IMAGE_DOC_EXTENSIONS + ["mp4", "mov"],
        )
    )

    upload_url: Optional[str] = None
    payments_url: Optional[str] = None
    notify_url: Optional[str] = None
    http_timeout: float = 60.0

    @classmethod
    def from_yaml(cls, path: str | Path) -> "CollabSettings":
        """Load settings from YAML. Supports nested (offers/uploads/services) or flat structure."""
        data = yaml.safe_load(Path(path).read_text()) or {}
        offers = data.get("offers", {})
        uploads = data.get("uploads", {})
        services = data.get("services", {})

        def _get(key: str, nested: dict, top: dict, default=None):
            return nested.get(key, top.get(key, default))

        flat: dict = {}
        for key in ("db_path", "currency", "http_timeout"):
            if key in data:
                flat[key] = data[key]
        for key in (
            "min_offer_amount",
            "max_offer_amount",
            "authorization_fee_cents",
            "offer_ttl_days",
        ):
            value = _get(key, offers, data)
            if value is not None:
                flat[key] = str(value) if key.endswith("_amount") else value
        for key in ("offer_attachments", "deliverables", "proofs"):
            value = _get(key, uploads, data)
            if value is not None:
                flat[key] = value
        for key in ("upload_url", "payments_url", "notify_url"):
            value = _get(key, services, data)
            if value is not None:
                flat[key] = value
        return cls.model_validate(flat)

    def with_env(self, environ: Optional[dict] = None) -> "CollabSettings":
        """Return a copy with COLLAB_DEALS_* environment overrides applied."""
        env = os.environ if environ is None else environ
        update: dict = {}
        if env.get("COLLAB_DEALS_DB"):
            update["db_path"] = Path(env["COLLAB_DEALS_DB"])
        if env.get("COLLAB_DEALS_UPLOAD_URL"):
            update["upload_url"] = env["COLLAB_DEALS_UPLOAD_URL"]
        if env.get("COLLAB_DEALS_PAYMENTS_URL"):
            update["payments_url"] = env["COLLAB_DEALS_PAYMENTS_URL"]
        if env.get("COLLAB_DEALS_NOTIFY_URL"):
            update["notify_url"] = env["COLLAB_DEALS_NOTIFY_URL"]
        if env.get("COLLAB_DEALS_OFFER_TTL_DAYS"):
            update["offer_ttl_days"] = int(env["COLLAB_DEALS_OFFER_TTL_DAYS"])
        return self.model_copy(update=update) if update else self

    @classmethod
    def load(cls, path: Optional[str | Path] = None) -> "CollabSettings":
        """Defaults, optionally overlaid with a YAML file, then env overrides."""
        settings = cls.from_yaml(path) if path else cls()
        return settings.with_env()
