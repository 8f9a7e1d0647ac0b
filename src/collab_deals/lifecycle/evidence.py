"""Upload gate shared by every transition that needs evidence."""

from typing import Callable, Optional, Sequence

from collab_deals.errors import EvidenceIncomplete, PartialFailure
from collab_deals.models.upload import LocalFile, UploadConstraints, UploadedFile
from collab_deals.uploads.pipeline import ProgressCallback, UploadPipeline, UploadSession

SessionCallback = Callable[[UploadSession], None]


async def collect_evidence(
    pipeline: UploadPipeline,
    entity_id: str,
    files: Sequence[LocalFile],
    constraints: UploadConstraints,
    *,
    on_progress: Optional[ProgressCallback] = None,
    on_session: Optional[SessionCallback] = None,
) -> list[UploadedFile]:
    """
    Upload files and return them only if every one is Stored.
    A partial failure or cancellation becomes EvidenceIncomplete; callers must not transition.
    on_session receives the live session so the caller can cancel or retry it.
    """
    if not files:
        return []
    session = await pipeline.begin(files, constraints, on_progress=on_progress)
    if on_session is not None:
        on_session(session)
    try:
        return await session.wait()
    except PartialFailure as e:
        raise EvidenceIncomplete(entity_id, e) from e
