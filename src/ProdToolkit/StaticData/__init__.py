# === NAVMAP v1 ===
# {
#   "module": "ProdToolkit.StaticData",
#   "purpose": "Package initialization for ProdToolkit.StaticData",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for synchronising versioned static game data.

A sync resolves the target version, downloads the version archive, the
constant resources, and one image per entity, and signals readiness once
everything is on disk.  Failures either regress to an older upstream version
or fall back to the previously synchronised data.

Example:
    >>> from ProdToolkit.StaticData import JsonConfigStore, run_sync
    >>> outcome = run_sync(JsonConfigStore(Path("config.json")))  # doctest: +SKIP
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict

from ._version import __version__

_EXPORTS: Dict[str, str] = {
    "ArchiveError": ".errors",
    "ArchivePipeline": ".archive",
    "ArchiveStage": ".errors",
    "ConfigStore": ".config_store",
    "ConfigurationError": ".errors",
    "ConstantsError": ".errors",
    "ConstantsPipeline": ".constants",
    "FallbackAction": ".fallback",
    "FallbackController": ".fallback",
    "FallbackDecision": ".fallback",
    "ImageError": ".errors",
    "ImageSyncPipeline": ".images",
    "JsonConfigStore": ".config_store",
    "PipelineError": ".errors",
    "PipelineStatus": ".readiness",
    "ReadinessGate": ".readiness",
    "ResolutionError": ".errors",
    "StaticBundle": ".bundle",
    "StaticDataError": ".errors",
    "StaticDataLayout": ".layout",
    "StaticDataSettings": ".settings",
    "StaticDataSync": ".orchestrator",
    "SyncAbortedError": ".errors",
    "SyncConfiguration": ".config_store",
    "SyncInProgressError": ".errors",
    "SyncOutcome": ".orchestrator",
    "SyncState": ".orchestrator",
    "VersionCandidate": ".versions",
    "VersionResolver": ".versions",
    "load_settings": ".settings",
    "load_static_bundle": ".bundle",
    "run_sync": ".orchestrator",
    "setup_logging": ".logging_config",
}

__all__ = ["__version__", *sorted(_EXPORTS)]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .archive import ArchivePipeline
    from .bundle import StaticBundle, load_static_bundle
    from .config_store import ConfigStore, JsonConfigStore, SyncConfiguration
    from .constants import ConstantsPipeline
    from .errors import (
        ArchiveError,
        ArchiveStage,
        ConfigurationError,
        ConstantsError,
        ImageError,
        PipelineError,
        ResolutionError,
        StaticDataError,
        SyncAbortedError,
        SyncInProgressError,
    )
    from .fallback import FallbackAction, FallbackController, FallbackDecision
    from .images import ImageSyncPipeline
    from .layout import StaticDataLayout
    from .logging_config import setup_logging
    from .orchestrator import StaticDataSync, SyncOutcome, SyncState, run_sync
    from .readiness import PipelineStatus, ReadinessGate
    from .settings import StaticDataSettings, load_settings
    from .versions import VersionCandidate, VersionResolver


def __getattr__(name: str) -> Any:
    """Lazily import exports so importing the package stays cheap."""

    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(module_name, __name__), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    """Expose lazily-populated attributes in ``dir()`` results."""

    return sorted(set(globals()) | set(_EXPORTS))
