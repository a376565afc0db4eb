"""Constants pipeline.

Fetches the small, independent JSON resources describing fixed game
taxonomies (game modes, game types, queues, seasons, maps) together with the
version-scoped item bin.  Every fetch runs concurrently; the set is
all-or-nothing, so payloads are written only once all of them arrived and
parsed.  Re-running always overwrites.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from .config_store import write_json_atomic
from .errors import ConstantsError
from .layout import StaticDataLayout
from .net import fetch_json
from .settings import HttpSettings, SourceSettings
from .versions import patch_of

LOGGER = logging.getLogger("ProdToolkit.StaticData.constants")

ITEM_BIN = "item.bin"

JsonFetcher = Callable[[str], Any]


@dataclass(frozen=True, slots=True)
class ConstantResource:
    name: str
    url: str
    path: Path


@dataclass(slots=True)
class ConstantsOutcome:
    version: str
    written: Tuple[Path, ...]


class ConstantsPipeline:
    """Fetch and write every constant resource for a version."""

    def __init__(
        self,
        layout: StaticDataLayout,
        *,
        sources: Optional[SourceSettings] = None,
        http: Optional[HttpSettings] = None,
        max_workers: int = 6,
        fetch: Optional[JsonFetcher] = None,
        tree_lock: Optional[threading.Lock] = None,
    ) -> None:
        self.layout = layout
        self.sources = sources or SourceSettings()
        self.http = http or HttpSettings()
        self.max_workers = max_workers
        self._fetch = fetch or (lambda url: fetch_json(url, http=self.http, stage="constants"))
        self.tree_lock = tree_lock or threading.Lock()

    def resources(self, version: str) -> Tuple[ConstantResource, ...]:
        """Return every resource the pipeline fetches for ``version``."""

        items = [
            ConstantResource(
                name=name,
                url=self.sources.constants_url_template.format(name=name),
                path=self.layout.constant_path(name),
            )
            for name in self.sources.constant_names
        ]
        items.append(
            ConstantResource(
                name=ITEM_BIN,
                url=self.sources.item_bin_url_template.format(
                    patch=patch_of(version), version=version
                ),
                path=self.layout.item_bin_path,
            )
        )
        return tuple(items)

    def run(self, version: str) -> ConstantsOutcome:
        """Fetch all resources concurrently, then write them.

        Raises:
            ConstantsError: Naming every resource that failed; nothing is
                written in that case.
        """
        resources = self.resources(version)
        LOGGER.info(
            "start downloading constants",
            extra={"stage": "constants", "version": version, "count": len(resources)},
        )
        payloads: Dict[str, Any] = {}
        failures: Dict[str, str] = {}
        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(resources)),
            thread_name_prefix="staticdata-constants",
        ) as executor:
            futures = {executor.submit(self._fetch, item.url): item for item in resources}
            for future, item in futures.items():
                try:
                    payloads[item.name] = future.result()
                except (httpx.HTTPError, ValueError) as exc:
                    LOGGER.debug(
                        "constant could not be downloaded",
                        extra={"stage": "constants", "resource": item.name, "error": str(exc)},
                    )
                    failures[item.name] = str(exc)

        if failures:
            names = sorted(failures)
            raise ConstantsError(
                f"{len(names)} of {len(resources)} constant resources failed: "
                + "; ".join(f"{name}: {failures[name]}" for name in names),
                failed=names,
                version=version,
            )

        written = []
        with self.tree_lock:
            try:
                for item in resources:
                    written.append(write_json_atomic(item.path, payloads[item.name]))
            except OSError as exc:
                raise ConstantsError(
                    f"writing constants failed: {exc}", failed=(item.name,), version=version
                ) from exc
        LOGGER.info("finished downloading constants", extra={"stage": "constants", "version": version})
        return ConstantsOutcome(version=version, written=tuple(written))


__all__ = ["ITEM_BIN", "ConstantResource", "ConstantsOutcome", "ConstantsPipeline"]
