"""External collaborators: payment authorization/release and notification dispatch."""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class PaymentAuthorization(BaseModel):
    authorized: bool
    reason: Optional[str] = None


class PaymentGateway(ABC):
    """Payment collaborator. Only its success/failure signal is consumed here."""

    @abstractmethod
    async def authorize(self, offer_id: str, amount_cents: int) -> PaymentAuthorization:
        """Authorize the one-time send fee for an offer."""

    @abstractmethod
    async def release(self, deal_id: str, milestone_id: str, amount_cents: int) -> None:
        """Signal that an approved milestone's payment may be released."""


class Notifier(ABC):
    """Fire-and-forget notification dispatch."""

    @abstractmethod
    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        pass


class HttpPaymentGateway(PaymentGateway):
    """Payment service client: POST /authorizations, POST /releases."""

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def authorize(self, offer_id: str, amount_cents: int) -> PaymentAuthorization:
        # Key is per attempt, not per offer
        resp = await self._client.post(
            self._base_url + "/authorizations",
            json={"offerId": offer_id, "amountCents": amount_cents},
            headers={"Idempotency-Key": f"offer-auth-{offer_id}-{uuid.uuid4().hex}"},
        )
        if resp.status_code == 402:
            body = resp.json() if resp.content else {}
            return PaymentAuthorization(authorized=False, reason=body.get("reason", "declined"))
        resp.raise_for_status()
        body = resp.json()
        return PaymentAuthorization(
            authorized=bool(body.get("authorized")),
            reason=body.get("reason"),
        )

    async def release(self, deal_id: str, milestone_id: str, amount_cents: int) -> None:
        resp = await self._client.post(
            self._base_url + "/releases",
            json={"dealId": deal_id, "milestoneId": milestone_id, "amountCents": amount_cents},
            headers={"Idempotency-Key": f"release-{milestone_id}"},
        )
        resp.raise_for_status()


class UnconfiguredPaymentGateway(PaymentGateway):
    """Stands in when no payment service URL is set: declines every authorization."""

    async def authorize(self, offer_id: str, amount_cents: int) -> PaymentAuthorization:
        return PaymentAuthorization(authorized=False, reason="no payment service configured")

    async def release(self, deal_id: str, milestone_id: str, amount_cents: int) -> None:
        logger.warning(
            "No payment service configured; release of %d cents for %s not sent", amount_cents, milestone_id
        )


class HttpNotifier(Notifier):
    """Posts notifications to a dispatch endpoint."""

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        resp = await self._client.post(
            self._url,
            json={"userId": user_id, "type": event_type, "data": payload},
        )
        resp.raise_for_status()


class LogNotifier(Notifier):
    """Writes notifications to the log; used when no dispatch endpoint is configured."""

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("notify %s %s %s", user_id, event_type, payload)


async def notify_quietly(notifier: Notifier, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
    """Dispatch a notification; failures are logged and never propagate."""
    try:
        await notifier.notify(user_id, event_type, payload)
    except Exception as e:
        logger.warning("Notification %s to %s failed: %s", event_type, user_id, e)


async def release_quietly(payments: PaymentGateway, deal_id: str, milestone_id: str, amount_cents: int) -> None:
    """Fire the payment-release signal; failures are logged for reconciliation."""
    try:
        await payments.release(deal_id, milestone_id, amount_cents)
    except Exception as e:
        logger.warning(
            "Payment release for milestone %s of deal %s failed: %s", milestone_id, deal_id, e
        )
