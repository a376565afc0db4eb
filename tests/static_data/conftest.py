"""Shared fixtures for static data sync tests.

Upstream endpoints are served by :class:`MockRoutes` through
``httpx.MockTransport``; destinations and config stores live under
``tmp_path``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Optional

import pytest

from ProdToolkit.StaticData.config_store import JsonConfigStore
from ProdToolkit.StaticData.layout import StaticDataLayout
from ProdToolkit.StaticData.settings import StaticDataSettings, build_settings
from ProdToolkit.StaticData.testing import MockRoutes, build_tarball, use_mock_http_client

VERSIONS_URL = "https://ddragon.leagueoflegends.com/api/versions.json"
ARCHIVE_URL = "https://ddragon.leagueoflegends.com/cdn/dragontail-{version}.tgz"
CONSTANT_URL = "https://static.developer.riotgames.com/docs/lol/{name}.json"
ITEM_BIN_URL = "https://raw.communitydragon.org/{patch}/game/items.cdtb.bin.json"
IMAGE_URL = "https://ddragon.leagueoflegends.com/cdn/img/champion/centered/{identifier}_0.jpg"
CONSTANT_NAMES = ("gameModes", "gameTypes", "queues", "seasons", "maps")
CHAMPIONS = ("Ahri", "Garen", "MonkeyKing")


def dragontail_members(
    version: str, champions: Iterable[str] = CHAMPIONS, language: str = "en_US"
) -> Dict[str, bytes]:
    """Minimal archive content for ``version``."""

    champion_data = {
        "type": "champion",
        "version": version,
        "data": {name: {"id": name, "name": name} for name in champions},
    }
    base = f"{version}/data/{language}"
    return {
        f"{base}/champion.json": json.dumps(champion_data).encode("utf-8"),
        f"{base}/item.json": json.dumps({"data": {"1001": {"name": "Boots"}}}).encode("utf-8"),
        f"{base}/map.json": json.dumps({"data": {"11": {"MapName": "Summoner's Rift"}}}).encode(
            "utf-8"
        ),
        f"{base}/runesReforged.json": json.dumps([{"id": 8000, "key": "Precision"}]).encode(
            "utf-8"
        ),
        f"{base}/tft-trait.json": b"{}",
        f"{version}/img/champion/Ahri.png": b"png-ahri",
        f"{version}/img/item/1001.png": b"png-boots",
        f"{version}/img/profileicon/1.png": b"png-icon",
        f"{version}/img/spell/Flash.png": b"png-flash",
        "img/champion/splash/Ahri_0.jpg": b"jpg-splash",
        "img/perk-images/Styles/Precision.png": b"png-precision",
        "img/tft/hexcore.png": b"png-tft",
    }


@pytest.fixture
def mock_routes():
    """Install a shared HTTP client answering from registered routes."""

    routes = MockRoutes()
    with use_mock_http_client(routes.transport()):
        yield routes


@pytest.fixture
def destination(tmp_path) -> Path:
    return tmp_path / "frontend"


@pytest.fixture
def settings(destination, tmp_path) -> StaticDataSettings:
    """Settings with single-attempt requests so failures never sleep."""

    return build_settings(
        {
            "http": {"max_retries": 1, "backoff_factor": 0.0},
            "sync": {
                "destination_root": str(destination),
                "confirm_timeout_sec": 0.2,
                "image_workers": 4,
            },
            "logging": {"directory": str(tmp_path / "logs")},
        }
    )


@pytest.fixture
def layout(settings) -> StaticDataLayout:
    return StaticDataLayout(settings.sync.destination_root, settings.sync.language)


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "config.json"


@pytest.fixture
def make_store(store_path):
    """Write a config document and return a store reading it."""

    def _make(
        *, desired: Optional[str] = None, last_synced: Optional[str] = None
    ) -> JsonConfigStore:
        payload = {}
        if desired is not None:
            payload["gameVersion"] = desired
        if last_synced is not None:
            payload["last-downloaded-version"] = last_synced
        store_path.write_text(json.dumps(payload), encoding="utf-8")
        return JsonConfigStore(store_path)

    return _make


@pytest.fixture
def upstream(mock_routes):
    """Register a healthy upstream for the given versions list."""

    def _serve(versions=("14.1.1", "13.24.1", "13.23.1"), *, champions=CHAMPIONS):
        mock_routes.add_json(VERSIONS_URL, list(versions))
        for version in versions:
            mock_routes.add_bytes(
                ARCHIVE_URL.format(version=version),
                build_tarball(dragontail_members(version, champions)),
            )
            patch = ".".join(version.split(".")[:2])
            mock_routes.add_json(ITEM_BIN_URL.format(patch=patch), {"Items/1001": {"mItemID": 1001}})
        for name in CONSTANT_NAMES:
            mock_routes.add_json(CONSTANT_URL.format(name=name), [{"name": name}])
        for identifier in champions:
            mock_routes.add_bytes(IMAGE_URL.format(identifier=identifier), f"jpg-{identifier}".encode())
        return mock_routes

    return _serve


@pytest.fixture
def dragontail():
    """Build a gzip tarball laid out like the upstream archive."""

    def _build(version: str, champions: Iterable[str] = CHAMPIONS, *, mtime=None) -> bytes:
        return build_tarball(dragontail_members(version, champions), mtime=mtime)

    return _build
