"""Per-file tracked multi-file upload with aggregate progress and caller-driven retry.

Flow for one session:
1. Every file gets a client token before any network activity
2. Constraint violations fail that file only (FileRejected reason recorded)
3. Accepted files are transferred concurrently, one task per file
4. wait() resolves with the stored files, or raises PartialFailure / UploadCancelled
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Optional, Sequence

from collab_deals.errors import FileRejected, PartialFailure, UploadCancelled
from collab_deals.models.upload import (
    FileStatus,
    LocalFile,
    UploadConstraints,
    UploadedFile,
)

from .rules import apply_size_rule, check_file
from .sinks import UploadSink

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class UploadSession:
    """One invocation of the pipeline covering a bounded file set."""

    def __init__(
        self,
        constraints: UploadConstraints,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.id = uuid.uuid4().hex
        self.constraints = constraints
        self.cancelled = False
        self._files: dict[str, UploadedFile] = {}
        self._sources: dict[str, LocalFile] = {}
        self._rejected: dict[str, str] = {}
        self._transferred: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._progress = 0.0
        self._on_progress = on_progress

    @property
    def files(self) -> list[UploadedFile]:
        """All files in request order."""
        return list(self._files.values())

    @property
    def stored_files(self) -> list[UploadedFile]:
        return [f for f in self._files.values() if f.is_stored]

    @property
    def failed_files(self) -> list[UploadedFile]:
        return [f for f in self._files.values() if f.status is FileStatus.FAILED]

    @property
    def progress(self) -> float:
        """Aggregate percentage; never decreases, reaches 100 only when every file is Stored."""
        return self._progress

    def file(self, client_token: str) -> UploadedFile:
        return self._files[client_token]

    def _set(self, token: str, **update) -> UploadedFile:
        current = self._files[token]
        updated = UploadedFile.model_validate({**current.model_dump(), **update})
        self._files[token] = updated
        return updated

    def _advance(self, token: str, nbytes: int) -> None:
        self._transferred[token] = self._transferred.get(token, 0) + nbytes
        self._recompute()

    def _recompute(self) -> None:
        # Zero-byte files weigh one byte so an unfinished empty file keeps progress < 100
        total = 0
        done = 0
        for token, f in self._files.items():
            weight = max(f.size_bytes, 1)
            total += weight
            if f.is_stored:
                done += weight
            else:
                done += min(self._transferred.get(token, 0), weight - 1)
        pct = 100.0 * done / total if total else 100.0
        if pct > self._progress:
            self._progress = pct
            if self._on_progress is not None:
                self._on_progress(pct)

    async def wait(self) -> list[UploadedFile]:
        """Await all transfers; return stored files or raise PartialFailure/UploadCancelled."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        if self.cancelled:
            raise UploadCancelled(self.stored_files, self.failed_files)
        if self.failed_files:
            raise PartialFailure(self.stored_files, self.failed_files)
        return self.stored_files


class UploadPipeline:
    """
    Drives local files to an UploadSink.
    No automatic retry: callers retry failed tokens explicitly, reusing the same tokens.
    Tokens stored by any recent session of this pipeline are not uploaded again;
    the most recent `stored_cache_size` tokens are remembered, older ones fall back
    to the sink, which is itself idempotent per token.
    """

    def __init__(self, sink: UploadSink, *, chunk_size: int = 64 * 1024, stored_cache_size: int = 1024):
        self._sink = sink
        self._chunk_size = chunk_size
        self._stored_cache_size = stored_cache_size
        self._stored: OrderedDict[str, UploadedFile] = OrderedDict()

    async def begin(
        self,
        files: Sequence[LocalFile],
        constraints: UploadConstraints,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadSession:
        """Validate files, assign tokens and start transfers. Returns without waiting."""
        session = UploadSession(constraints, on_progress)
        for index, source in enumerate(files):
            token = source.client_token or uuid.uuid4().hex
            if token in session._files:
                raise ValueError(f"Duplicate client token in one session: {token}")
            source = source.model_copy(update={"client_token": token})
            session._sources[token] = source
            session._files[token] = UploadedFile(
                client_token=token,
                file_name=source.name,
                mime_type=source.mime_type,
                size_bytes=source.size_bytes or 0,
            )
            reason = check_file(source, index, constraints)
            if reason:
                rejection = FileRejected(source.name, reason)
                session._rejected[token] = rejection.reason
                session._set(token, status=FileStatus.FAILED, failure_reason=rejection.reason)
                logger.info("Rejected %s: %s", source.name, rejection.reason)

        for token in list(session._files):
            if token not in session._rejected:
                self._schedule(session, token)
        session._recompute()
        return session

    async def upload(
        self,
        files: Sequence[LocalFile],
        constraints: UploadConstraints,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[UploadedFile]:
        """begin + wait."""
        session = await self.begin(files, constraints, on_progress=on_progress)
        return await session.wait()

    def retry(self, session: UploadSession, failed_client_tokens: Iterable[str]) -> UploadSession:
        """Re-run transfers for the given failed tokens in the same session."""
        if session.cancelled:
            raise UploadCancelled(session.stored_files, session.failed_files)
        for token in failed_client_tokens:
            current = session.file(token)
            if current.status is not FileStatus.FAILED:
                continue
            if token in session._rejected:
                # Constraints have not changed; the rejection stands
                continue
            session._set(token, status=FileStatus.PENDING, failure_reason=None)
            self._schedule(session, token)
        return session

    def cancel(self, session: UploadSession) -> None:
        """Stop in-flight transfers. Files already Stored stay Stored."""
        session.cancelled = True
        for token, task in session._tasks.items():
            if not task.done() and not session.file(token).is_stored:
                task.cancel()
                session._set(token, status=FileStatus.FAILED, failure_reason="cancelled")

    def _schedule(self, session: UploadSession, token: str) -> None:
        known = self._stored.get(token)
        if known is not None:
            self._stored.move_to_end(token)
            session._files[token] = known
            session._recompute()
            return
        session._tasks[token] = asyncio.create_task(self._transfer(session, token))

    async def _chunks(self, session: UploadSession, token: str, source: LocalFile) -> AsyncIterator[bytes]:
        """Stream the file, enforcing the size cap on bytes actually read."""
        limit = session.constraints.max_file_bytes
        sent = 0
        for chunk in source.iter_chunks(self._chunk_size):
            sent += len(chunk)
            if sent > limit:
                # size_bytes was measured before the read; the content grew since
                _, explanation = apply_size_rule(source.model_copy(update={"size_bytes": sent}), 0, session.constraints)
                session._rejected[token] = explanation
                raise FileRejected(source.name, explanation)
            session._advance(token, len(chunk))
            yield chunk

    async def _transfer(self, session: UploadSession, token: str) -> None:
        source = session._sources[token]
        session._set(token, status=FileStatus.UPLOADING)
        try:
            remote_url = await self._sink.store(
                token,
                self._chunks(session, token, source),
                mime_type=source.mime_type,
                file_name=source.name,
                size_bytes=source.size_bytes or 0,
            )
        except asyncio.CancelledError:
            session._set(token, status=FileStatus.FAILED, failure_reason="cancelled")
            raise
        except Exception as e:
            # Sinks may wrap the stream error; a size rejection recorded by _chunks wins
            if token in session._rejected:
                logger.info("Rejected %s mid-transfer: %s", source.name, session._rejected[token])
                session._set(token, status=FileStatus.FAILED, failure_reason=session._rejected[token])
                return
            logger.warning("Upload failed for %s (%s): %s", source.name, token, e)
            session._set(token, status=FileStatus.FAILED, failure_reason=str(e) or type(e).__name__)
            return

        stored = session._set(
            token,
            status=FileStatus.STORED,
            remote_url=remote_url,
            failure_reason=None,
            stored_at=datetime.now(timezone.utc),
        )
        self._remember(token, stored)
        session._recompute()

    def _remember(self, token: str, stored: UploadedFile) -> None:
        self._stored[token] = stored
        self._stored.move_to_end(token)
        while len(self._stored) > self._stored_cache_size:
            self._stored.popitem(last=False)
