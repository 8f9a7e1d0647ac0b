"""Tests for upload sinks and HTTP collaborators, using httpx.MockTransport."""

import json
from pathlib import Path

import httpx
import pytest

from collab_deals.collaborators import (
    HttpNotifier,
    HttpPaymentGateway,
    LogNotifier,
    notify_quietly,
    release_quietly,
)
from collab_deals.uploads import HttpUploadSink, LocalUploadSink


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestLocalUploadSink:
    @pytest.mark.asyncio
    async def test_stores_under_token_directory(self, tmp_path: Path) -> None:
        sink = LocalUploadSink(tmp_path, base_url="https://files.test")
        url = await sink.store(
            "tok-1", _chunks(b"ab", b"cd"), mime_type="image/png", file_name="My Photo.png", size_bytes=4
        )
        assert url == "https://files.test/tok-1/My_Photo.png"
        assert (tmp_path / "tok-1" / "My_Photo.png").read_bytes() == b"abcd"
        assert not list((tmp_path / "tok-1").glob(".partial-*"))

    @pytest.mark.asyncio
    async def test_same_token_not_rewritten(self, tmp_path: Path) -> None:
        """Storing a token twice returns the same URL and keeps the first content."""
        sink = LocalUploadSink(tmp_path)
        first = await sink.store("tok-1", _chunks(b"one"), mime_type="text/plain", file_name="a.txt", size_bytes=3)
        second = await sink.store("tok-1", _chunks(b"two"), mime_type="text/plain", file_name="a.txt", size_bytes=3)
        assert first == second
        assert first.startswith("file://")
        assert (tmp_path / "tok-1" / "a.txt").read_bytes() == b"one"

    @pytest.mark.asyncio
    async def test_failed_write_leaves_no_partial_file(self, tmp_path: Path) -> None:
        async def broken():
            yield b"ab"
            raise ConnectionError("client went away")

        sink = LocalUploadSink(tmp_path)
        with pytest.raises(ConnectionError):
            await sink.store("tok-1", broken(), mime_type="text/plain", file_name="a.txt", size_bytes=4)
        assert list((tmp_path / "tok-1").iterdir()) == []


class TestHttpUploadSink:
    @pytest.mark.asyncio
    async def test_put_with_idempotency_key(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["key"] = request.headers["Idempotency-Key"]
            seen["name"] = request.headers["X-File-Name"]
            seen["body"] = request.content
            return httpx.Response(201, json={"remoteUrl": "https://cdn.test/abc"})

        sink = HttpUploadSink("https://uploads.test/", client=_client(handler))
        url = await sink.store("abc", _chunks(b"he", b"llo"), mime_type="image/png", file_name="a.png", size_bytes=5)
        await sink.aclose()

        assert url == "https://cdn.test/abc"
        assert seen == {
            "method": "PUT",
            "path": "/uploads/abc",
            "key": "abc",
            "name": "a.png",
            "body": b"hello",
        }

    @pytest.mark.asyncio
    async def test_missing_remote_url_is_an_error(self) -> None:
        sink = HttpUploadSink("https://uploads.test", client=_client(lambda r: httpx.Response(200, json={})))
        with pytest.raises(ValueError):
            await sink.store("abc", _chunks(b"x"), mime_type="image/png", file_name="a.png", size_bytes=1)

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        sink = HttpUploadSink("https://uploads.test", client=_client(lambda r: httpx.Response(503)))
        with pytest.raises(httpx.HTTPStatusError):
            await sink.store("abc", _chunks(b"x"), mime_type="image/png", file_name="a.png", size_bytes=1)


class TestHttpPaymentGateway:
    @pytest.mark.asyncio
    async def test_authorized(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"authorized": True})

        gateway = HttpPaymentGateway("https://pay.test", client=_client(handler))
        auth = await gateway.authorize("offer-1", 100)
        assert auth.authorized is True
        assert requests[0].url.path == "/authorizations"
        assert json.loads(requests[0].content) == {"offerId": "offer-1", "amountCents": 100}
        assert requests[0].headers["Idempotency-Key"].startswith("offer-auth-offer-1-")

    @pytest.mark.asyncio
    async def test_retry_after_decline_uses_new_key(self) -> None:
        """A second send attempt is not answered from the first attempt's stored decline."""
        keys = []
        replies = iter(
            [
                httpx.Response(402, json={"reason": "insufficient funds"}),
                httpx.Response(200, json={"authorized": True}),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            keys.append(request.headers["Idempotency-Key"])
            return next(replies)

        gateway = HttpPaymentGateway("https://pay.test", client=_client(handler))
        first = await gateway.authorize("offer-1", 100)
        second = await gateway.authorize("offer-1", 100)
        assert first.authorized is False
        assert second.authorized is True
        assert len(set(keys)) == 2

    @pytest.mark.asyncio
    async def test_declined_with_402(self) -> None:
        gateway = HttpPaymentGateway(
            "https://pay.test",
            client=_client(lambda r: httpx.Response(402, json={"reason": "card declined"})),
        )
        auth = await gateway.authorize("offer-1", 100)
        assert auth.authorized is False
        assert auth.reason == "card declined"

    @pytest.mark.asyncio
    async def test_release_posts_amount(self) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(202)

        gateway = HttpPaymentGateway("https://pay.test", client=_client(handler))
        await gateway.release("deal-1", "deal-1-m1", 50000)
        assert bodies == [{"dealId": "deal-1", "milestoneId": "deal-1-m1", "amountCents": 50000}]


class TestQuietCollaborators:
    @pytest.mark.asyncio
    async def test_notify_failure_is_logged_not_raised(self, caplog) -> None:
        notifier = HttpNotifier("https://notify.test/send", client=_client(lambda r: httpx.Response(500)))
        await notify_quietly(notifier, "user-1", "offer_sent", {"offerId": "o1"})
        assert "offer_sent" in caplog.text

    @pytest.mark.asyncio
    async def test_release_failure_is_logged_not_raised(self, caplog) -> None:
        gateway = HttpPaymentGateway("https://pay.test", client=_client(lambda r: httpx.Response(500)))
        await release_quietly(gateway, "deal-1", "deal-1-m1", 100)
        assert "deal-1-m1" in caplog.text

    @pytest.mark.asyncio
    async def test_log_notifier(self, caplog) -> None:
        caplog.set_level("INFO")
        await LogNotifier().notify("user-1", "offer_sent", {"offerId": "o1"})
        assert "user-1" in caplog.text
