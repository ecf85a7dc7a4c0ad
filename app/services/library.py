"""Resolving provider candidates to entities in the local library."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Movie, Series
from ..models import (
    ExternalCandidate,
    LanguageFilter,
    MediaType,
    PopularMovie,
    PopularSeries,
    RankedResult,
)

logger = logging.getLogger(__name__)

LibraryEntity = Union[Movie, Series]

# Externally ranked items score ``POSITION_SCORE_BASE - position`` so the
# provider order survives any later sort by score.
POSITION_SCORE_BASE = 100_000


def entity_model(media_type: MediaType) -> type[Movie] | type[Series]:
    if media_type == "movies":
        return Movie
    if media_type == "series":
        return Series
    raise ValueError(f"Unsupported media type: {media_type!r}")


def build_ranked_result(
    media_type: MediaType,
    entity: LibraryEntity,
    *,
    popularity_score: float,
    rank: int,
    unique_viewers: int = 0,
    play_count: int = 0,
    completion_rate: float = 0.0,
) -> RankedResult:
    """Wrap a library entity and its metrics in the public result model."""

    fields = dict(
        id=entity.id,
        title=entity.title,
        year=entity.year,
        poster_url=entity.poster_url,
        backdrop_url=entity.backdrop_url,
        overview=entity.overview,
        genres=list(entity.genres or []),
        community_rating=entity.community_rating,
        tmdb_id=entity.tmdb_id,
        imdb_id=entity.imdb_id,
        unique_viewers=unique_viewers,
        play_count=play_count,
        completion_rate=completion_rate,
        popularity_score=popularity_score,
        rank=rank,
    )
    if media_type == "movies":
        return PopularMovie(path=getattr(entity, "path", None), **fields)
    return PopularSeries(network=getattr(entity, "network", None), **fields)


def filter_by_language(
    candidates: Sequence[ExternalCandidate], language_filter: LanguageFilter | None
) -> list[ExternalCandidate]:
    """Drop candidates whose original language is not allowed."""

    if language_filter is None:
        return list(candidates)
    kept = [
        candidate
        for candidate in candidates
        if language_filter.allows(candidate.original_language)
    ]
    logger.debug(
        "Language filter %s (include unknown=%s) kept %s of %s candidates",
        ",".join(language_filter.languages),
        language_filter.include_unknown,
        len(kept),
        len(candidates),
    )
    return kept


class IdentifierIndex:
    """Lookup of library entities by TMDB, IMDb and TVDB identifiers."""

    def __init__(self, entities: Iterable[LibraryEntity] = ()):
        self._by_tmdb: dict[str, LibraryEntity] = {}
        self._by_imdb: dict[str, LibraryEntity] = {}
        self._by_tvdb: dict[str, LibraryEntity] = {}
        for entity in entities:
            if entity.tmdb_id:
                self._by_tmdb.setdefault(str(entity.tmdb_id), entity)
            if entity.imdb_id:
                self._by_imdb.setdefault(str(entity.imdb_id), entity)
            if entity.tvdb_id:
                self._by_tvdb.setdefault(str(entity.tvdb_id), entity)

    def resolve(self, candidate: ExternalCandidate) -> LibraryEntity | None:
        """Return the entity for the first identifier that matches.

        TMDB ids are tried first, then IMDb, then TVDB.
        """

        if candidate.tmdb_id:
            entity = self._by_tmdb.get(candidate.tmdb_id)
            if entity is not None:
                return entity
        if candidate.imdb_id:
            entity = self._by_imdb.get(candidate.imdb_id)
            if entity is not None:
                return entity
        if candidate.tvdb_id:
            return self._by_tvdb.get(candidate.tvdb_id)
        return None


@dataclass(slots=True)
class CandidateMatch:
    candidate: ExternalCandidate
    entity: LibraryEntity


@dataclass(frozen=True, slots=True)
class WatchStats:
    unique_viewers: int = 0
    play_count: int = 0


def match_candidates(
    candidates: Sequence[ExternalCandidate],
    index: IdentifierIndex,
    limit: int,
    *,
    language_filter: LanguageFilter | None = None,
) -> list[CandidateMatch]:
    """Walk candidates in provider order and keep the first ``limit`` matches.

    ``language_filter`` is for providers that carry no language metadata: the
    matched entity's language stands in when the candidate has none. Filtered
    candidates do not use up a slot.
    """

    matches: list[CandidateMatch] = []
    emitted: set[str] = set()
    for candidate in candidates:
        if len(matches) >= limit:
            break
        entity = index.resolve(candidate)
        if entity is None or entity.id in emitted:
            continue
        if language_filter is not None:
            language = candidate.original_language or entity.original_language
            if not language_filter.allows(language):
                continue
        emitted.add(entity.id)
        matches.append(CandidateMatch(candidate=candidate, entity=entity))
    return matches


def rank_matches(
    media_type: MediaType,
    matches: Sequence[CandidateMatch],
    stats: Mapping[str, WatchStats],
) -> list[RankedResult]:
    """Turn ordered matches into ranked results with dense ranks."""

    results: list[RankedResult] = []
    for rank, match in enumerate(matches, start=1):
        watch = stats.get(match.entity.id, WatchStats())
        if media_type == "movies":
            completion = 1.0 if watch.play_count > 0 else 0.0
        else:
            # No per-viewer episode data for externally sourced series.
            completion = 0.5 if watch.play_count > 0 else 0.0
        results.append(
            build_ranked_result(
                media_type,
                match.entity,
                popularity_score=float(POSITION_SCORE_BASE - match.candidate.position),
                rank=rank,
                unique_viewers=watch.unique_viewers,
                play_count=watch.play_count,
                completion_rate=completion,
            )
        )
    return results


class LibraryRepository:
    """Read access to library entities keyed by external identifiers."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_external_ids(
        self, media_type: MediaType, candidates: Sequence[ExternalCandidate]
    ) -> list[LibraryEntity]:
        """Load every entity sharing at least one identifier with ``candidates``."""

        model = entity_model(media_type)
        tmdb_ids = {c.tmdb_id for c in candidates if c.tmdb_id}
        imdb_ids = {c.imdb_id for c in candidates if c.imdb_id}
        tvdb_ids = {c.tvdb_id for c in candidates if c.tvdb_id}

        conditions = []
        if tmdb_ids:
            conditions.append(model.tmdb_id.in_(sorted(tmdb_ids)))
        if imdb_ids:
            conditions.append(model.imdb_id.in_(sorted(imdb_ids)))
        if tvdb_ids:
            conditions.append(model.tvdb_id.in_(sorted(tvdb_ids)))
        if not conditions:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(model).where(or_(*conditions)).order_by(model.id)
            )
            return list(result.scalars().all())

    async def build_index(
        self, media_type: MediaType, candidates: Sequence[ExternalCandidate]
    ) -> IdentifierIndex:
        entities = await self.find_by_external_ids(media_type, candidates)
        return IdentifierIndex(entities)
