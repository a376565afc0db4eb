"""Exception hierarchy shared across version resolution, pipelines, and sync.

A static data sync spans version resolution, three independently failing
artifact pipelines, and the fallback policy that decides what to do when one
of them breaks.  This module groups those failure modes so the orchestrator
can react to high-level categories (resolution vs. pipeline failures) while
still having access to the pipeline-specific detail needed for diagnostics.

Pipelines convert transport and filesystem exceptions into one of the
:class:`PipelineError` subclasses at their boundary; nothing below this
hierarchy escapes into the orchestrator unconverted.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

__all__ = [
    "StaticDataError",
    "ConfigurationError",
    "ResolutionError",
    "PipelineError",
    "ArchiveStage",
    "ArchiveError",
    "ConstantsError",
    "ImageError",
    "SyncAbortedError",
    "SyncInProgressError",
]


class StaticDataError(RuntimeError):
    """Base exception for static data resolution, download, or staging failures."""


class ConfigurationError(StaticDataError):
    """Raised when settings, config store content, or staged files are invalid."""


class ResolutionError(StaticDataError):
    """Raised when the target version cannot be determined."""

    def __init__(
        self,
        message: str,
        *,
        cursor: int = 0,
        list_available: bool = True,
        exhausted: bool = False,
    ) -> None:
        super().__init__(message)
        self.cursor = cursor
        self.list_available = list_available
        self.exhausted = exhausted


class PipelineError(StaticDataError):
    """Raised when one of the artifact pipelines fails for a version."""

    pipeline = "pipeline"

    def __init__(self, message: str, *, version: Optional[str] = None) -> None:
        super().__init__(message)
        self.version = version


class ArchiveStage(str, Enum):
    """Sequential stages of the archive pipeline."""

    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    PROMOTING = "promoting"
    CLEANING_UP = "cleaning-up"
    DONE = "done"


class ArchiveError(PipelineError):
    """Raised when the archive cannot be downloaded, extracted, or promoted."""

    pipeline = "archive"

    def __init__(
        self,
        message: str,
        *,
        stage: ArchiveStage,
        version: Optional[str] = None,
    ) -> None:
        super().__init__(f"[{stage.value}] {message}", version=version)
        self.stage = stage


class ConstantsError(PipelineError):
    """Raised when any constant resource fails; the set is all-or-nothing."""

    pipeline = "constants"

    def __init__(
        self,
        message: str,
        *,
        failed: Sequence[str] = (),
        version: Optional[str] = None,
    ) -> None:
        super().__init__(message, version=version)
        self.failed = tuple(failed)


class ImageError(PipelineError):
    """Raised when a single entity image fails to download or write."""

    pipeline = "images"

    def __init__(
        self,
        message: str,
        *,
        failed_identifier: Optional[str] = None,
        version: Optional[str] = None,
    ) -> None:
        super().__init__(message, version=version)
        self.failed_identifier = failed_identifier


class SyncAbortedError(StaticDataError):
    """Raised when a sync run ends without readiness and no fallback remains."""


class SyncInProgressError(StaticDataError):
    """Raised when another sync run holds the destination root lock."""
