"""Upload sinks: durable, content-addressable storage keyed by client token."""

import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx

logger = logging.getLogger(__name__)


class UploadSink(ABC):
    """
    Storage collaborator. Must be idempotent on client_token: storing the same
    token twice yields the same remote URL and no duplicate object.
    """

    @abstractmethod
    async def store(
        self,
        client_token: str,
        chunks: AsyncIterator[bytes],
        *,
        mime_type: str,
        file_name: str,
        size_bytes: int,
    ) -> str:
        """Consume chunks, persist them and return the remote URL."""


class HttpUploadSink(UploadSink):
    """Streams each file with PUT {base_url}/uploads/{client_token}."""

    UPLOAD_PATH_TEMPLATE = "/uploads/{token}"

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def store(
        self,
        client_token: str,
        chunks: AsyncIterator[bytes],
        *,
        mime_type: str,
        file_name: str,
        size_bytes: int,
    ) -> str:
        url = self._base_url + self.UPLOAD_PATH_TEMPLATE.format(token=client_token)
        headers = {
            "Content-Type": mime_type,
            "Content-Length": str(size_bytes),
            "Idempotency-Key": client_token,
            "X-File-Name": file_name,
        }
        resp = await self._client.put(url, content=chunks, headers=headers)
        resp.raise_for_status()
        payload = resp.json()
        remote_url = payload.get("remoteUrl") or payload.get("url")
        if not remote_url:
            raise ValueError(f"Upload sink returned no remoteUrl for {client_token}")
        return remote_url

    async def aclose(self) -> None:
        await self._client.aclose()


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "file"


class LocalUploadSink(UploadSink):
    """
    Directory-backed sink: <root>/<client_token>/<file name>.
    A token whose file already exists is not rewritten.
    """

    def __init__(self, root: str | Path, base_url: str = "file://"):
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")

    def _url_for(self, client_token: str, name: str) -> str:
        if self._base_url == "file:":
            return (self._root / client_token / name).resolve().as_uri()
        return f"{self._base_url}/{client_token}/{name}"

    async def store(
        self,
        client_token: str,
        chunks: AsyncIterator[bytes],
        *,
        mime_type: str,
        file_name: str,
        size_bytes: int,
    ) -> str:
        name = _safe_name(file_name)
        target_dir = self._root / client_token
        target = target_dir / name
        if target.exists():
            logger.info("Token %s already stored; skipping rewrite", client_token)
            return self._url_for(client_token, name)

        target_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target_dir, prefix=".partial-")
        try:
            with os.fdopen(fd, "wb") as fh:
                async for chunk in chunks:
                    fh.write(chunk)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return self._url_for(client_token, name)
