"""Helper client for curated MDBList lists and batch media lookups."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from ..config import Settings
from ..models import ExternalCandidate, MediaType
from ..utils import coerce_external_id, parse_year

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


@dataclass(slots=True)
class MediaInfo:
    """Subset of an MDBList media record used for artwork backfill."""

    tmdb_id: str | None
    imdb_id: str | None = None
    title: str | None = None
    poster: str | None = None


class MDBListClient:
    """Wrapper around the MDBList list and media endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def is_configured(self) -> bool:
        return self._settings.mdblist_configured

    async def fetch_list_items(
        self,
        list_id: int,
        *,
        limit: int,
        sort: str = "score",
        order: Literal["asc", "desc"] = "desc",
        media_type: MediaType | None = None,
    ) -> list[ExternalCandidate]:
        """Return list items in the order MDBList sorted them."""

        if not self.is_configured:
            logger.warning("MDBList not configured, returning empty list %s", list_id)
            return []
        if limit <= 0:
            return []

        response = await self._client.get(
            f"/lists/{list_id}/items",
            params={
                "apikey": self._settings.mdblist_api_key,
                "limit": limit,
                "sort": sort,
                "order": order,
            },
        )
        response.raise_for_status()
        raw_items = self._extract_items(response.json(), media_type)

        candidates: list[ExternalCandidate] = []
        for item in raw_items:
            if len(candidates) >= limit:
                break
            candidates.append(self._to_candidate(item, position=len(candidates)))

        if not candidates:
            logger.warning("MDBList returned empty list %s", list_id)
        return candidates

    async def fetch_media_info_batch(
        self, tmdb_ids: list[str], media_type: MediaType
    ) -> list[MediaInfo]:
        """Look up media records by TMDB id, 100 ids per request."""

        if not tmdb_ids:
            return []
        if not self.is_configured:
            logger.warning("MDBList not configured, skipping media info lookup")
            return []

        kind = "movie" if media_type == "movies" else "show"
        results: list[MediaInfo] = []
        for start in range(0, len(tmdb_ids), BATCH_SIZE):
            batch = tmdb_ids[start : start + BATCH_SIZE]
            response = await self._client.post(
                f"/tmdb/{kind}",
                params={"apikey": self._settings.mdblist_api_key},
                json={"ids": batch},
            )
            response.raise_for_status()
            payload = response.json()
            if isinstance(payload, dict):
                entries = list(payload.values())
            elif isinstance(payload, list):
                entries = payload
            else:
                logger.warning("Unexpected MDBList batch response type %s", type(payload).__name__)
                continue

            for entry in entries:
                # Error and documentation pages come back as dicts too.
                if not isinstance(entry, dict) or "website" in entry or "documentation" in entry:
                    continue
                ids = entry.get("ids") if isinstance(entry.get("ids"), dict) else {}
                results.append(
                    MediaInfo(
                        tmdb_id=coerce_external_id(ids.get("tmdb") or entry.get("tmdbid")),
                        imdb_id=coerce_external_id(ids.get("imdb") or entry.get("imdbid")),
                        title=entry.get("title"),
                        poster=entry.get("poster") or None,
                    )
                )
        return results

    @staticmethod
    def _extract_items(payload: Any, media_type: MediaType | None) -> list[dict[str, Any]]:
        """Accept bare arrays, ``{items: [...]}`` and ``{movies, shows}`` shapes."""

        if isinstance(payload, list):
            items = payload
        elif isinstance(payload, dict):
            if "movies" in payload or "shows" in payload:
                movies = payload.get("movies") or []
                shows = payload.get("shows") or []
                if media_type == "movies":
                    items = movies
                elif media_type == "series":
                    items = shows
                else:
                    items = [*movies, *shows]
            elif isinstance(payload.get("items"), list):
                items = payload["items"]
            else:
                logger.warning(
                    "Unexpected MDBList items response keys: %s", sorted(payload.keys())
                )
                return []
        else:
            return []

        wanted = None
        if media_type is not None:
            wanted = "movie" if media_type == "movies" else "show"
        cleaned: list[dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            kind = item.get("mediatype")
            if wanted and isinstance(kind, str) and kind and kind != wanted:
                continue
            cleaned.append(item)
        return cleaned

    @staticmethod
    def _to_candidate(item: dict[str, Any], *, position: int) -> ExternalCandidate:
        # List items use ``id`` for the TMDB id.
        score = item.get("score")
        language = item.get("language")
        return ExternalCandidate(
            position=position,
            title=str(item.get("title") or "Unknown"),
            year=parse_year(item.get("release_year") or item.get("year")),
            tmdb_id=coerce_external_id(item.get("id") or item.get("tmdbid")),
            imdb_id=coerce_external_id(item.get("imdb_id") or item.get("imdbid")),
            tvdb_id=coerce_external_id(item.get("tvdb_id") or item.get("tvdbid")),
            poster_url=item.get("poster") or None,
            overview=item.get("description") or None,
            score=float(score) if isinstance(score, (int, float)) else None,
            original_language=str(language).lower() if language else None,
        )
