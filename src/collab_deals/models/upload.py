"""Local file handles, stored file references and upload constraints."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FileStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    STORED = "stored"
    FAILED = "failed"


class LocalFile(BaseModel):
    """
    A file on the client side, before upload.
    Holds either an in-memory blob (data) or a filesystem path.
    """

    name: str
    mime_type: str = "application/octet-stream"
    size_bytes: Optional[int] = None
    data: Optional[bytes] = None
    path: Optional[Path] = None
    client_token: Optional[str] = Field(
        default=None,
        description="Idempotency key; assigned by the pipeline when missing",
    )

    @model_validator(mode="after")
    def _check_source(self) -> "LocalFile":
        if (self.data is None) == (self.path is None):
            raise ValueError("LocalFile needs exactly one of data or path")
        actual = len(self.data) if self.data is not None else self.path.stat().st_size
        if self.size_bytes is None:
            self.size_bytes = actual
        elif self.size_bytes != actual:
            raise ValueError(f"Declared size {self.size_bytes} does not match content size {actual}")
        return self

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower().lstrip(".")

    def iter_chunks(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        """Yield file content in chunks of at most chunk_size bytes."""
        if self.data is not None:
            for start in range(0, len(self.data), chunk_size):
                yield self.data[start : start + chunk_size]
            return
        with open(self.path, "rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk


class UploadedFile(BaseModel):
    """
    Reference to a stored (or attempted) binary.
    Frozen: every status change produces a new instance, so a Stored file never changes.
    """

    model_config = ConfigDict(frozen=True)

    client_token: str
    file_name: str
    mime_type: str
    size_bytes: int
    status: FileStatus = FileStatus.PENDING
    remote_url: Optional[str] = None
    failure_reason: Optional[str] = None
    stored_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _stored_needs_url(self) -> "UploadedFile":
        if self.status is FileStatus.STORED and not self.remote_url:
            raise ValueError("Stored file must have a remote_url")
        return self

    @property
    def is_stored(self) -> bool:
        return self.status is FileStatus.STORED


class UploadConstraints(BaseModel):
    """Per-caller limits applied to each file of an upload session."""

    max_files: int = 10
    max_file_bytes: int = 10 * 1024 * 1024
    allowed_extensions: list[str] = Field(default_factory=list, description="Empty = any")
    allowed_mime_prefixes: list[str] = Field(
        default_factory=list,
        description="e.g. ['image/', 'application/pdf']; empty = any",
    )
