"""Tests for per-entity image sync."""

import json
import threading
import time

import httpx
import pytest

from ProdToolkit.StaticData.errors import ConfigurationError, ImageError
from ProdToolkit.StaticData.images import ImageSyncPipeline, load_entity_identifiers


def _image_url(settings, identifier):
    return settings.sources.champion_image_url_template.format(identifier=identifier)


class TestEntityIdentifiers:
    def test_reads_ids_from_data_mapping(self, tmp_path):
        path = tmp_path / "champion.json"
        path.write_text(
            json.dumps(
                {
                    "data": {
                        "Ahri": {"id": "Ahri"},
                        "Wukong": {"id": "MonkeyKing"},
                        "Garen": {"name": "Garen"},
                    }
                }
            )
        )
        assert load_entity_identifiers(path) == ("Ahri", "MonkeyKing", "Garen")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_entity_identifiers(tmp_path / "champion.json")

    @pytest.mark.parametrize("content", ["{", "[]", '{"data": []}'])
    def test_malformed_file(self, tmp_path, content):
        path = tmp_path / "champion.json"
        path.write_text(content)
        with pytest.raises(ConfigurationError):
            load_entity_identifiers(path)


class TestImageSync:
    def test_downloads_one_image_per_identifier(self, settings, mock_routes, tmp_path):
        for identifier in ("Ahri", "Garen"):
            mock_routes.add_bytes(_image_url(settings, identifier), identifier.encode())
        pipeline = ImageSyncPipeline(sources=settings.sources, http=settings.http, max_workers=2)
        target = tmp_path / "centered"

        outcome = pipeline.run(["Ahri", "Garen", "Ahri"], target)

        assert sorted(path.name for path in outcome.written) == ["Ahri.jpg", "Garen.jpg"]
        assert (target / "Ahri.jpg").read_bytes() == b"Ahri"
        assert len(mock_routes.requests) == 2

    def test_empty_identifier_set(self, settings, mock_routes, tmp_path):
        outcome = ImageSyncPipeline(sources=settings.sources, http=settings.http).run([], tmp_path)
        assert outcome.written == ()
        assert mock_routes.requests == []

    def test_failure_raises_with_identifier(self, settings, mock_routes, tmp_path):
        mock_routes.add_bytes(_image_url(settings, "Ahri"), b"ok")
        mock_routes.add_status(_image_url(settings, "Broken"), 404)
        pipeline = ImageSyncPipeline(sources=settings.sources, http=settings.http, max_workers=1)

        with pytest.raises(ImageError) as excinfo:
            pipeline.run(["Ahri", "Broken"], tmp_path)

        assert excinfo.value.failed_identifier == "Broken"
        assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)
        # Images written before the failure stay in place.
        assert (tmp_path / "Ahri.jpg").read_bytes() == b"ok"

    def test_first_failure_cancels_pending_downloads(self, settings, tmp_path):
        started = []
        lock = threading.Lock()

        def _fetch(url):
            with lock:
                started.append(url)
            if url.endswith("/A0_0.jpg"):
                raise httpx.ConnectError("refused")
            time.sleep(0.01)
            return b"img"

        identifiers = [f"A{index}" for index in range(50)]
        pipeline = ImageSyncPipeline(sources=settings.sources, max_workers=1, fetch=_fetch)

        with pytest.raises(ImageError) as excinfo:
            pipeline.run(identifiers, tmp_path)

        assert excinfo.value.failed_identifier == "A0"
        assert len(started) < len(identifiers)

    @pytest.mark.parametrize("identifier", ["../evil", "a/b", ".hidden", "a\\b"])
    def test_unsafe_identifier_rejected(self, settings, mock_routes, tmp_path, identifier):
        pipeline = ImageSyncPipeline(sources=settings.sources, http=settings.http)
        with pytest.raises(ImageError):
            pipeline.run([identifier], tmp_path)
        assert mock_routes.requests == []
