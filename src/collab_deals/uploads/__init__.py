"""Multi-file upload pipeline, constraint rules and storage sinks."""

from .pipeline import ProgressCallback, UploadPipeline, UploadSession
from .rules import check_file
from .sinks import HttpUploadSink, LocalUploadSink, UploadSink

__all__ = [
    "HttpUploadSink",
    "LocalUploadSink",
    "ProgressCallback",
    "UploadPipeline",
    "UploadSession",
    "UploadSink",
    "check_file",
]
