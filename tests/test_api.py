from __future__ import annotations

from typing import Any, Mapping

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.main import get_popularity_service, register_routes
from app.models import (
    PopularMovie,
    PopularSeries,
    PreviewCountsParams,
    PreviewCountsResult,
    PreviewItem,
    PreviewOptions,
    PreviewResult,
    TopPicksConfig,
    TopPicksResult,
)
from app.services.popularity import PopularityService


class DummyPopularityService(PopularityService):
    """Minimal PopularityService stub for route testing."""

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        # Deliberately skip super().__init__ to avoid touching external systems.
        self.last_overrides: Mapping[str, Any] | None = None
        self.last_preview: tuple[str, str, PreviewOptions] | None = None
        self.last_counts: PreviewCountsParams | None = None
        self.config = TopPicksConfig()
        self.fail_upstream = False

    async def get_top_movies(self, overrides=None):  # type: ignore[override]
        self.last_overrides = overrides
        if self.fail_upstream:
            raise httpx.ConnectError("connection refused")
        config = TopPicksConfig().merged(overrides)
        return [
            PopularMovie(
                id="m1",
                title="Heat",
                popularity_score=25.5,
                rank=1,
                unique_viewers=config.movies_min_unique_viewers,
            )
        ]

    async def get_top_series(self, overrides=None):  # type: ignore[override]
        self.last_overrides = overrides
        return [PopularSeries(id="s1", title="Dark", popularity_score=3.0, rank=1)]

    async def get_top_picks(self, overrides=None):  # type: ignore[override]
        return TopPicksResult(
            movies=await self.get_top_movies(overrides),
            series=await self.get_top_series(overrides),
        )

    async def get_top_movies_preview(self, source, options=None):  # type: ignore[override]
        self.last_preview = ("movies", source, options)
        return PreviewResult(
            matched=[PreviewItem(id="m1", title="Heat", rank=1, position=2, in_library=True)],
            missing=[PreviewItem(title="Missing", rank=1, position=1, in_library=False)],
            source=source,
            media_type="movies",
        )

    async def get_top_series_preview(self, source, options=None):  # type: ignore[override]
        self.last_preview = ("series", source, options)
        return PreviewResult(source=source, media_type="series")

    async def get_preview_counts(self, params):  # type: ignore[override]
        self.last_counts = params
        return PreviewCountsResult(
            movies=12,
            series=4,
            recommended_movies_min_viewers=2,
            recommended_series_min_viewers=1,
        )

    async def get_config(self):  # type: ignore[override]
        return self.config

    async def save_config(self, changes):  # type: ignore[override]
        self.config = self.config.updated(changes)
        return self.config


def _client() -> tuple[TestClient, DummyPopularityService]:
    app = FastAPI()
    register_routes(app)
    service = DummyPopularityService()
    app.state.popularity_service = service
    return TestClient(app), service


def test_healthcheck() -> None:
    client, _ = _client()
    with client:
        assert client.get("/healthz").json() == {"status": "ok"}


def test_top_picks_payload_uses_camel_case() -> None:
    client, _ = _client()
    with client:
        response = client.get("/api/top-picks")

    assert response.status_code == 200
    payload = response.json()
    assert payload["movies"][0]["popularityScore"] == 25.5
    assert payload["series"][0]["id"] == "s1"


def test_media_routes_accept_overrides() -> None:
    client, service = _client()
    with client:
        response = client.post("/api/top-picks/movies", json={"moviesMinUniqueViewers": 4})

    assert response.status_code == 200
    assert response.json()[0]["uniqueViewers"] == 4
    assert service.last_overrides == {"moviesMinUniqueViewers": 4}


def test_invalid_overrides_are_rejected() -> None:
    client, _ = _client()
    with client:
        response = client.post("/api/top-picks/movies", json={"moviesPopularitySource": "netflix"})

    assert response.status_code == 400


def test_unknown_media_type_is_404() -> None:
    client, _ = _client()
    with client:
        assert client.get("/api/top-picks/books").status_code == 404


def test_series_route() -> None:
    client, service = _client()
    with client:
        response = client.get("/api/top-picks/series")

    assert response.status_code == 200
    assert response.json()[0]["title"] == "Dark"
    assert service.last_overrides is None


def test_preview_route_parses_options() -> None:
    client, service = _client()
    with client:
        response = client.post(
            "/api/top-picks/movies/preview",
            json={"source": "tmdb_popular", "limit": 50, "languages": "en,fr"},
        )

    assert response.status_code == 200
    payload = response.json()
    assert payload["matched"][0]["inLibrary"] is True
    assert payload["missing"][0]["position"] == 1
    media_type, source, options = service.last_preview
    assert (media_type, source) == ("movies", "tmdb_popular")
    assert options.limit == 50
    assert options.languages == ("en", "fr")


def test_preview_route_rejects_bad_limit() -> None:
    client, _ = _client()
    with client:
        response = client.post("/api/top-picks/series/preview", json={"limit": 0})

    assert response.status_code == 400


def test_preview_counts_route() -> None:
    client, service = _client()
    with client:
        response = client.post("/api/top-picks/preview-counts", json={"moviesMinViewers": 3})

    assert response.status_code == 200
    assert response.json()["recommendedMoviesMinViewers"] == 2
    assert service.last_counts.movies_min_viewers == 3


def test_config_routes_read_and_update() -> None:
    client, _ = _client()
    with client:
        updated = client.put("/api/top-picks/config", json={"seriesPopularitySource": "hybrid"})
        current = client.get("/api/top-picks/config")

    assert updated.status_code == 200
    assert current.json()["seriesPopularitySource"] == "hybrid"


def test_upstream_errors_map_to_bad_gateway() -> None:
    client, service = _client()
    service.fail_upstream = True
    with client:
        response = client.get("/api/top-picks/movies")

    assert response.status_code == 502
    assert response.json()["error"] == "upstream_error"


def test_missing_service_raises() -> None:
    with pytest.raises(RuntimeError):
        get_popularity_service(FastAPI())
