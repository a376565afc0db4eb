# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData.archive",
#   "purpose": "Download, extract, promote, and clean up the version archive",
#   "sections": [
#     {"id": "outcome", "name": "ArchiveOutcome", "anchor": "class-archiveoutcome", "kind": "class"},
#     {"id": "extract", "name": "extract_members", "anchor": "function-extract-members", "kind": "function"},
#     {"id": "pipeline", "name": "ArchivePipeline", "anchor": "class-archivepipeline", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Archive pipeline.

The bulk of the versioned assets ships as a single large tarball.  The
pipeline walks four strictly sequential stages:

1. **Downloading** the version-stamped archive into the staging directory.
2. **Extracting** only an allow-list of members into the destination root,
   never overwriting a destination file that is as new as or newer than the
   archive member.
3. **Promoting** the version-scoped subtree into the destination root so
   consumers can use version-independent paths.
4. **Cleaning up** the archive file and the version-scoped subtree.

A failure in any stage raises :class:`ArchiveError` carrying that stage; the
following stages never run.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Sequence

import httpx
import libarchive

from .errors import ArchiveError, ArchiveStage
from .layout import StaticDataLayout
from .net import stream_to_file
from .progress import ProgressSink
from .settings import HttpSettings, SourceSettings

LOGGER = logging.getLogger("ProdToolkit.StaticData.archive")


@dataclass(slots=True)
class ArchiveOutcome:
    """Summary of a completed archive pipeline run."""

    version: str
    bytes_downloaded: int
    members_extracted: int
    members_skipped: int


@dataclass(slots=True)
class ExtractionStats:
    matched: int = 0
    extracted: int = 0
    skipped: int = 0


def _validate_member_path(member_name: str) -> PurePosixPath:
    """Normalise an archive member name and reject traversal attempts."""

    normalized = member_name.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    candidate = PurePosixPath(normalized.rstrip("/"))
    if candidate.is_absolute():
        raise ValueError(f"Unsafe absolute path detected in archive: {member_name}")
    if any(part == ".." for part in candidate.parts):
        raise ValueError(f"Unsafe path detected in archive: {member_name}")
    return candidate


def _is_allowed(member: PurePosixPath, allow_list: Sequence[str]) -> bool:
    name = member.as_posix()
    return any(name == prefix or name.startswith(prefix + "/") for prefix in allow_list)


def extract_members(
    archive_path: Path,
    destination: Path,
    allow_list: Iterable[str],
    *,
    logger: Optional[logging.Logger] = None,
) -> ExtractionStats:
    """Extract allow-listed members of ``archive_path`` into ``destination``.

    A regular file is skipped when the destination already holds a file whose
    modification time is newer than or equal to the member's, so re-running
    against a fresher tree leaves it untouched.  Links and special files are
    ignored.

    Raises:
        ValueError: If an allow-listed member path escapes ``destination``.
        libarchive.ArchiveError: If the archive cannot be read.
        OSError: If writing to ``destination`` fails.
    """
    log = logger or LOGGER
    allowed = tuple(prefix.strip("/") for prefix in allow_list)
    stats = ExtractionStats()
    destination.mkdir(parents=True, exist_ok=True)

    with libarchive.file_reader(str(archive_path)) as archive:
        for entry in archive:
            member = _validate_member_path(entry.pathname)
            if not member.parts or not _is_allowed(member, allowed):
                continue
            stats.matched += 1
            target = destination.joinpath(*member.parts)
            if entry.isdir:
                target.mkdir(parents=True, exist_ok=True)
                continue
            if not entry.isfile:
                log.debug(
                    "skipping non-regular archive member",
                    extra={"stage": "extract", "member": entry.pathname},
                )
                continue
            member_mtime = entry.mtime
            if target.exists() and (
                member_mtime is None or target.stat().st_mtime >= member_mtime
            ):
                stats.skipped += 1
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as handle:
                for block in entry.get_blocks():
                    handle.write(block)
            if member_mtime is not None:
                os.utime(target, (member_mtime, member_mtime))
            stats.extracted += 1
    return stats


class ArchivePipeline:
    """Download and stage the version archive."""

    def __init__(
        self,
        layout: StaticDataLayout,
        *,
        sources: Optional[SourceSettings] = None,
        http: Optional[HttpSettings] = None,
        staging_dir: Optional[Path] = None,
        progress: Optional[ProgressSink] = None,
        tree_lock: Optional[threading.Lock] = None,
    ) -> None:
        self.layout = layout
        self.sources = sources or SourceSettings()
        self.http = http or HttpSettings()
        self.staging_dir = staging_dir or layout.root
        self.progress = progress
        self.tree_lock = tree_lock or threading.Lock()
        self.stage: Optional[ArchiveStage] = None

    def archive_path(self, version: str) -> Path:
        return self.staging_dir / f"dragontail-{version}.tgz"

    def _enter(self, stage: ArchiveStage, version: str) -> None:
        self.stage = stage
        LOGGER.info(
            "archive stage",
            extra={"stage": "archive", "archive_stage": stage.value, "version": version},
        )

    def run(self, version: str, destination_root: Optional[Path] = None) -> ArchiveOutcome:
        """Run every stage for ``version``.

        Raises:
            ArchiveError: With the stage that failed.
        """
        root = destination_root or self.layout.root
        layout = self.layout if root == self.layout.root else StaticDataLayout(root, self.layout.language)
        archive_path = self.archive_path(version)
        version_dir = layout.version_dir(version)

        self._enter(ArchiveStage.DOWNLOADING, version)
        size = self._download(version, archive_path)

        self._enter(ArchiveStage.EXTRACTING, version)
        try:
            stats = extract_members(archive_path, root, layout.archive_members(version), logger=LOGGER)
        except (libarchive.ArchiveError, OSError, ValueError) as exc:
            self._discard(archive_path, version_dir)
            raise ArchiveError(
                f"extraction of {archive_path.name} failed: {exc}",
                stage=ArchiveStage.EXTRACTING,
                version=version,
            ) from exc
        if stats.matched == 0:
            self._discard(archive_path, version_dir)
            raise ArchiveError(
                f"{archive_path.name} contains none of the expected members",
                stage=ArchiveStage.EXTRACTING,
                version=version,
            )
        LOGGER.info(
            "archive extracted",
            extra={
                "stage": "archive",
                "version": version,
                "extracted": stats.extracted,
                "skipped": stats.skipped,
            },
        )

        with self.tree_lock:
            self._enter(ArchiveStage.PROMOTING, version)
            if not version_dir.is_dir():
                self._discard(archive_path, version_dir)
                raise ArchiveError(
                    f"{archive_path.name} has no {version}/ subtree to promote",
                    stage=ArchiveStage.PROMOTING,
                    version=version,
                )
            try:
                shutil.copytree(version_dir, root, dirs_exist_ok=True)
            except (shutil.Error, OSError) as exc:
                raise ArchiveError(
                    f"promoting {version_dir} failed: {exc}",
                    stage=ArchiveStage.PROMOTING,
                    version=version,
                ) from exc

            self._enter(ArchiveStage.CLEANING_UP, version)
            try:
                archive_path.unlink(missing_ok=True)
                shutil.rmtree(version_dir)
            except OSError as exc:
                raise ArchiveError(
                    f"removing staging files failed: {exc}",
                    stage=ArchiveStage.CLEANING_UP,
                    version=version,
                ) from exc

        self.stage = ArchiveStage.DONE
        return ArchiveOutcome(
            version=version,
            bytes_downloaded=size,
            members_extracted=stats.extracted,
            members_skipped=stats.skipped,
        )

    def _download(self, version: str, archive_path: Path) -> int:
        url = self.sources.archive_url_template.format(version=version)
        LOGGER.info("start downloading archive", extra={"stage": "archive", "url": url})
        try:
            size = stream_to_file(
                url,
                archive_path,
                http=self.http,
                progress=self.progress,
                label=f"Downloading dragontail {version}",
            )
        except (httpx.HTTPError, OSError) as exc:
            archive_path.unlink(missing_ok=True)
            raise ArchiveError(
                f"download of {url} failed: {exc}",
                stage=ArchiveStage.DOWNLOADING,
                version=version,
            ) from exc
        if size <= 0 or not archive_path.exists() or archive_path.stat().st_size <= 0:
            archive_path.unlink(missing_ok=True)
            raise ArchiveError(
                f"download of {url} produced an empty file",
                stage=ArchiveStage.DOWNLOADING,
                version=version,
            )
        LOGGER.info(
            "finished downloading archive",
            extra={"stage": "archive", "version": version, "bytes": size},
        )
        return size

    @staticmethod
    def _discard(archive_path: Path, version_dir: Path) -> None:
        archive_path.unlink(missing_ok=True)
        shutil.rmtree(version_dir, ignore_errors=True)


__all__ = ["ArchiveOutcome", "ExtractionStats", "ArchivePipeline", "extract_members"]
