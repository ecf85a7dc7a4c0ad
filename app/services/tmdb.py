"""Ranked popularity feeds from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
import math
from typing import Any

import httpx

from ..config import Settings
from ..models import ExternalCandidate, MediaType, TMDBVariant
from ..utils import build_image_url, coerce_external_id, parse_year

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
# TMDB refuses page numbers above 500.
MAX_PAGES = 500

TMDB_VARIANTS: tuple[str, ...] = ("popular", "trending_day", "trending_week", "top_rated")


class TMDBClient:
    """Client fetching TMDB popular, trending and top-rated feeds."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def is_configured(self) -> bool:
        return self._settings.tmdb_configured

    async def fetch_ranked_list(
        self, media_type: MediaType, variant: TMDBVariant, limit: int
    ) -> list[ExternalCandidate]:
        """Return up to ``limit`` feed items in TMDB's own order.

        Pages are requested sequentially until enough distinct titles were
        collected or TMDB runs out of results. Items repeated across pages
        (the feeds shift while paginating) keep their first position.
        """

        if not self.is_configured:
            logger.warning("TMDB API key not configured, returning empty %s feed", variant)
            return []
        if limit <= 0:
            return []

        path = self._endpoint(media_type, variant)
        pages = min(max(1, math.ceil(limit / PAGE_SIZE)), MAX_PAGES)

        candidates: list[ExternalCandidate] = []
        seen: set[str] = set()
        for page in range(1, pages + 1):
            response = await self._client.get(
                path,
                params={
                    "api_key": self._settings.tmdb_api_key,
                    "language": "en-US",
                    "page": page,
                },
            )
            response.raise_for_status()
            payload = response.json()
            results = payload.get("results") if isinstance(payload, dict) else None
            if not results:
                break

            for entry in results:
                if len(candidates) >= limit:
                    break
                if not isinstance(entry, dict):
                    continue
                candidate = self._to_candidate(entry, media_type, position=len(candidates))
                if candidate is None or candidate.tmdb_id in seen:
                    continue
                seen.add(candidate.tmdb_id)  # type: ignore[arg-type]
                candidates.append(candidate)

            if len(candidates) >= limit:
                break
            total_pages = payload.get("total_pages")
            if isinstance(total_pages, int) and page >= total_pages:
                break

        logger.debug(
            "TMDB %s %s returned %s items over %s requested", media_type, variant, len(candidates), limit
        )
        return candidates

    @staticmethod
    def _endpoint(media_type: MediaType, variant: TMDBVariant) -> str:
        kind = "movie" if media_type == "movies" else "tv"
        if variant == "popular":
            return f"/{kind}/popular"
        if variant == "top_rated":
            return f"/{kind}/top_rated"
        if variant == "trending_day":
            return f"/trending/{kind}/day"
        if variant == "trending_week":
            return f"/trending/{kind}/week"
        raise ValueError(f"Unknown TMDB feed: {variant!r}")

    def _to_candidate(
        self, entry: dict[str, Any], media_type: MediaType, *, position: int
    ) -> ExternalCandidate | None:
        tmdb_id = coerce_external_id(entry.get("id"))
        if tmdb_id is None:
            return None
        date_key = "release_date" if media_type == "movies" else "first_air_date"
        title = entry.get("title") or entry.get("name") or "Unknown"
        vote_average = entry.get("vote_average")
        language = entry.get("original_language")
        return ExternalCandidate(
            position=position,
            title=str(title),
            year=parse_year(entry.get(date_key)),
            tmdb_id=tmdb_id,
            poster_url=build_image_url(
                entry.get("poster_path"), self._settings.tmdb_image_base_url
            ),
            overview=entry.get("overview") or None,
            score=float(vote_average) if isinstance(vote_average, (int, float)) else None,
            original_language=str(language).lower() if language else None,
            genre_ids=[
                genre for genre in entry.get("genre_ids") or [] if isinstance(genre, int)
            ],
        )


def tmdb_variant_for(source: str) -> TMDBVariant:
    """Map a ``tmdb_*`` popularity source onto its feed name."""

    variant = source.removeprefix("tmdb_")
    if variant not in TMDB_VARIANTS:
        raise ValueError(f"Not a TMDB popularity source: {source!r}")
    return variant  # type: ignore[return-value]
