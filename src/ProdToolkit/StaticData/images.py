"""Per-entity image sync.

The entity identifiers are only known once the archive pipeline has staged
``champion.json``, so the fan-out width of this pipeline is data-dependent.
Downloads run on a bounded thread pool.  The first failure cancels the
downloads that have not started yet and fails the pipeline; images already
written by sibling downloads stay in place.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import httpx

from .errors import ConfigurationError, ImageError
from .net import fetch_bytes
from .settings import HttpSettings, SourceSettings

LOGGER = logging.getLogger("ProdToolkit.StaticData.images")

ByteFetcher = Callable[[str], bytes]


def load_entity_identifiers(champion_file: Path) -> Tuple[str, ...]:
    """Read entity identifiers from a staged ``champion.json``.

    The identifier is the ``id`` of every entry under ``data``, falling back
    to the entry key when ``id`` is absent.

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    try:
        payload = json.loads(champion_file.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"entity metadata not found: {champion_file}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"entity metadata unreadable: {champion_file}: {exc}") from exc
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        raise ConfigurationError(f"entity metadata {champion_file} has no 'data' mapping")
    identifiers: List[str] = []
    for key, entry in data.items():
        identifier = entry.get("id", key) if isinstance(entry, dict) else key
        if isinstance(identifier, str) and identifier:
            identifiers.append(identifier)
    return tuple(identifiers)


@dataclass(slots=True)
class ImagesOutcome:
    written: Tuple[Path, ...]


class ImageSyncPipeline:
    """Download one image per entity identifier."""

    def __init__(
        self,
        *,
        sources: Optional[SourceSettings] = None,
        http: Optional[HttpSettings] = None,
        max_workers: int = 8,
        fetch: Optional[ByteFetcher] = None,
    ) -> None:
        self.sources = sources or SourceSettings()
        self.http = http or HttpSettings()
        self.max_workers = max_workers
        self._fetch = fetch or (lambda url: fetch_bytes(url, http=self.http, stage="images"))

    def _download_one(self, identifier: str, destination_dir: Path) -> Path:
        url = self.sources.champion_image_url_template.format(identifier=identifier)
        try:
            content = self._fetch(url)
            target = destination_dir / f"{identifier}.jpg"
            target.write_bytes(content)
        except (httpx.HTTPError, OSError) as exc:
            raise ImageError(
                f"image for {identifier} failed: {exc}", failed_identifier=identifier
            ) from exc
        return target

    def run(self, identifiers: Iterable[str], destination_dir: Path) -> ImagesOutcome:
        """Download every image into ``destination_dir``.

        Raises:
            ImageError: For the first identifier whose download or write failed.
        """
        unique = tuple(dict.fromkeys(identifiers))
        for identifier in unique:
            if "/" in identifier or "\\" in identifier or identifier.startswith("."):
                raise ImageError(f"unsafe entity identifier: {identifier!r}", failed_identifier=identifier)
        destination_dir.mkdir(parents=True, exist_ok=True)
        LOGGER.info(
            "start downloading images",
            extra={"stage": "images", "count": len(unique), "destination": str(destination_dir)},
        )
        if not unique:
            return ImagesOutcome(written=())

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(unique)),
            thread_name_prefix="staticdata-images",
        )
        try:
            futures = [
                executor.submit(self._download_one, identifier, destination_dir)
                for identifier in unique
            ]
            done, _pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()  # type: ignore[misc]
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        written = tuple(future.result() for future in futures)
        LOGGER.info("finished downloading images", extra={"stage": "images", "count": len(written)})
        return ImagesOutcome(written=written)


__all__ = ["ImagesOutcome", "ImageSyncPipeline", "load_entity_identifiers"]
