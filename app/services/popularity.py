"""Top Picks ranking: routing between local telemetry and external providers."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Sequence

from ..models import (
    DEFAULT_PREVIEW_EXTERNAL_SOURCE,
    ExternalCandidate,
    LanguageFilter,
    MediaType,
    PreviewCountsParams,
    PreviewCountsResult,
    PreviewItem,
    PreviewOptions,
    PreviewResult,
    RankedResult,
    RankingConfig,
    TopPicksConfig,
    TopPicksResult,
    normalize_popularity_source,
    sort_order_for,
)
from .blending import blend_rankings
from .config_store import TopPicksConfigStore
from .library import (
    LibraryEntity,
    LibraryRepository,
    filter_by_language,
    match_candidates,
    rank_matches,
)
from .mdblist import MDBListClient
from .telemetry import TelemetryRepository, rank_aggregates
from .tmdb import TMDBClient, tmdb_variant_for

logger = logging.getLogger(__name__)

# Provider lists are over-fetched because only part of them is in the library.
OVERFETCH_MULTIPLIER = 3
HYBRID_MULTIPLIER = 2

THRESHOLD_LADDER: tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 15, 20)
DEFAULT_TARGET_COUNT = 25


class PopularityService:
    """Produces Top Picks rankings, admin previews and threshold hints."""

    def __init__(
        self,
        config_store: TopPicksConfigStore,
        telemetry: TelemetryRepository,
        library: LibraryRepository,
        tmdb: TMDBClient,
        mdblist: MDBListClient,
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._config_store = config_store
        self._telemetry = telemetry
        self._library = library
        self._tmdb = tmdb
        self._mdblist = mdblist
        self._clock = clock

    async def get_config(self) -> TopPicksConfig:
        return await self._config_store.load()

    async def save_config(self, changes: Mapping[str, Any]) -> TopPicksConfig:
        """Apply ``changes`` to the stored configuration and persist the result.

        Explicit ``None`` values clear the stored setting back to its default.
        """

        config = (await self._config_store.load()).updated(changes)
        return await self._config_store.save(config)

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------
    async def get_top_movies(
        self, overrides: Mapping[str, Any] | None = None
    ) -> list[RankedResult]:
        config = (await self._config_store.load()).merged(overrides)
        return await self.rank(config.ranking_config("movies"))

    async def get_top_series(
        self, overrides: Mapping[str, Any] | None = None
    ) -> list[RankedResult]:
        config = (await self._config_store.load()).merged(overrides)
        return await self.rank(config.ranking_config("series"))

    async def get_top_picks(
        self, overrides: Mapping[str, Any] | None = None
    ) -> TopPicksResult:
        """Rank movies and series concurrently from one configuration snapshot."""

        config = (await self._config_store.load()).merged(overrides)
        movies, series = await asyncio.gather(
            self.rank(config.ranking_config("movies")),
            self.rank(config.ranking_config("series")),
        )
        return TopPicksResult(movies=movies, series=series)

    async def rank(self, config: RankingConfig) -> list[RankedResult]:
        """Dispatch ``config`` to the ranking strategy for its source."""

        limit = config.result_limit
        source = config.source

        if source == "mdblist" and config.list_id is None:
            logger.warning(
                "MDBList selected for %s but no list configured, using local history",
                config.media_type,
            )
            source = "local"
        if (
            source == "hybrid"
            and config.hybrid_external_source == "mdblist"
            and config.list_id is None
        ):
            logger.warning(
                "MDBList selected as hybrid source for %s but no list configured, "
                "using local history",
                config.media_type,
            )
            source = "local"

        if source == "local":
            results = await self._rank_local(config, limit)
        elif source == "hybrid":
            results = await self._rank_hybrid(config, limit)
        else:
            results = await self._rank_external(
                config, source, limit, fetch_count=limit * OVERFETCH_MULTIPLIER
            )

        logger.info(
            "Calculated %s top %s from %s (limit %s)",
            len(results),
            config.media_type,
            source,
            limit,
        )
        return results

    async def _rank_local(self, config: RankingConfig, limit: int) -> list[RankedResult]:
        since = self._clock() - timedelta(days=config.time_window_days)
        aggregates = await self._telemetry.aggregate(
            config.media_type, since=since, min_unique_viewers=config.min_unique_viewers
        )
        return rank_aggregates(config.media_type, aggregates, config.weights, limit)

    async def _rank_external(
        self, config: RankingConfig, source: str, limit: int, *, fetch_count: int
    ) -> list[RankedResult]:
        media_type = config.media_type
        candidates, deferred_filter = await self._fetch_candidates(
            media_type,
            source,
            fetch_count,
            list_id=config.list_id,
            list_sort=config.list_sort,
            language_filter=config.language_filter,
        )
        if not candidates:
            return []

        index = await self._library.build_index(media_type, candidates)
        matches = match_candidates(
            candidates, index, limit, language_filter=deferred_filter
        )
        stats = await self._telemetry.lifetime_stats(
            media_type, [match.entity.id for match in matches]
        )
        logger.debug(
            "Matched %s of %s %s candidates from %s",
            len(matches),
            len(candidates),
            media_type,
            source,
        )
        return rank_matches(media_type, matches, stats)

    async def _rank_hybrid(self, config: RankingConfig, limit: int) -> list[RankedResult]:
        side_limit = limit * HYBRID_MULTIPLIER
        local, external = await asyncio.gather(
            self._rank_local(config, side_limit),
            self._rank_external(
                config,
                config.hybrid_external_source,
                side_limit,
                fetch_count=side_limit * OVERFETCH_MULTIPLIER,
            ),
        )
        if not external:
            logger.warning(
                "Hybrid %s external source %s returned nothing, blending local only",
                config.media_type,
                config.hybrid_external_source,
            )
        return blend_rankings(
            local,
            external,
            local_weight=config.hybrid_local_weight,
            external_weight=config.hybrid_external_weight,
            limit=limit,
        )

    async def _fetch_candidates(
        self,
        media_type: MediaType,
        source: str,
        limit: int,
        *,
        list_id: int | None,
        list_sort: str,
        language_filter: LanguageFilter | None,
    ) -> tuple[list[ExternalCandidate], LanguageFilter | None]:
        """Fetch provider candidates.

        Returns the candidates and the language filter still to be applied
        while matching. TMDB feeds are filtered here since they carry the
        original language; MDBList items are filtered once matched.
        """

        if source == "mdblist":
            if list_id is None:
                return [], None
            candidates = await self._mdblist.fetch_list_items(
                list_id,
                limit=limit,
                sort=list_sort,
                order=sort_order_for(list_sort),
                media_type=media_type,
            )
            return candidates, language_filter

        candidates = await self._tmdb.fetch_ranked_list(
            media_type, tmdb_variant_for(source), limit
        )
        return filter_by_language(candidates, language_filter), None

    # ------------------------------------------------------------------
    # Previews
    # ------------------------------------------------------------------
    async def get_top_movies_preview(
        self, source: str, options: PreviewOptions | None = None
    ) -> PreviewResult:
        return await self.preview("movies", source, options or PreviewOptions())

    async def get_top_series_preview(
        self, source: str, options: PreviewOptions | None = None
    ) -> PreviewResult:
        return await self.preview("series", source, options or PreviewOptions())

    async def preview(
        self, media_type: MediaType, source: str, options: PreviewOptions
    ) -> PreviewResult:
        """Show which provider items are in the library and which are missing."""

        source = normalize_popularity_source(source)
        if source == "local":
            return await self._preview_local(media_type, options)

        effective = source
        if source == "hybrid":
            effective = options.hybrid_external_source or DEFAULT_PREVIEW_EXTERNAL_SOURCE

        if effective == "mdblist" and options.mdblist_list_id is None:
            logger.warning("MDBList preview for %s requested without a list id", media_type)
            return PreviewResult(source=source, media_type=media_type)

        candidates, deferred_filter = await self._fetch_candidates(
            media_type,
            effective,
            options.limit,
            list_id=options.mdblist_list_id,
            list_sort=options.mdblist_sort,
            language_filter=options.language_filter,
        )
        if not candidates:
            return PreviewResult(source=source, media_type=media_type)

        if effective == "mdblist":
            index, backfilled = await asyncio.gather(
                self._library.build_index(media_type, candidates),
                self._backfill_posters(media_type, candidates),
            )
        else:
            index = await self._library.build_index(media_type, candidates)
            backfilled = {}

        matched: list[PreviewItem] = []
        missing: list[PreviewItem] = []
        position = 0
        for candidate in candidates:
            entity = index.resolve(candidate)
            language = candidate.original_language or (
                entity.original_language if entity is not None else None
            )
            if deferred_filter is not None and not deferred_filter.allows(language):
                continue
            position += 1
            partition = matched if entity is not None else missing
            partition.append(
                self._preview_item(
                    candidate,
                    entity,
                    rank=len(partition) + 1,
                    position=position,
                    language=language,
                    backfilled_poster=(
                        backfilled.get(candidate.tmdb_id) if candidate.tmdb_id else None
                    ),
                )
            )

        logger.info(
            "%s preview from %s: %s candidates, %s matched, %s missing",
            media_type.capitalize(),
            effective,
            position,
            len(matched),
            len(missing),
        )
        return PreviewResult(
            matched=matched, missing=missing, source=source, media_type=media_type
        )

    async def _preview_local(
        self, media_type: MediaType, options: PreviewOptions
    ) -> PreviewResult:
        stored = await self._config_store.load()
        config = stored.merged(
            {
                f"{media_type}_popularity_source": "local",
                f"{media_type}_count": options.limit,
                f"{media_type}_use_all_matches": False,
            }
        ).ranking_config(media_type)
        results = await self._rank_local(config, config.result_limit)
        matched = [
            PreviewItem(
                id=result.id,
                tmdb_id=result.tmdb_id,
                imdb_id=result.imdb_id,
                title=result.title,
                year=result.year,
                poster_url=result.poster_url,
                rank=result.rank,
                position=result.rank,
                in_library=True,
                overview=result.overview,
                vote_average=result.community_rating,
            )
            for result in results
        ]
        return PreviewResult(matched=matched, source="local", media_type=media_type)

    async def _backfill_posters(
        self, media_type: MediaType, candidates: Sequence[ExternalCandidate]
    ) -> dict[str, str]:
        tmdb_ids = [
            candidate.tmdb_id
            for candidate in candidates
            if candidate.tmdb_id and not candidate.poster_url
        ]
        if not tmdb_ids:
            return {}
        infos = await self._mdblist.fetch_media_info_batch(tmdb_ids, media_type)
        return {info.tmdb_id: info.poster for info in infos if info.tmdb_id and info.poster}

    @staticmethod
    def _preview_item(
        candidate: ExternalCandidate,
        entity: LibraryEntity | None,
        *,
        rank: int,
        position: int,
        language: str | None,
        backfilled_poster: str | None,
    ) -> PreviewItem:
        library_poster = entity.poster_url if entity is not None else None
        return PreviewItem(
            id=entity.id if entity is not None else None,
            tmdb_id=candidate.tmdb_id or (entity.tmdb_id if entity is not None else None),
            imdb_id=candidate.imdb_id or (entity.imdb_id if entity is not None else None),
            title=candidate.title,
            year=candidate.year,
            poster_url=library_poster or candidate.poster_url or backfilled_poster,
            rank=rank,
            position=position,
            in_library=entity is not None,
            overview=candidate.overview,
            vote_average=candidate.score,
            genre_ids=list(candidate.genre_ids),
            original_language=language,
        )

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------
    async def recommend_min_viewers(
        self,
        media_type: MediaType,
        time_window_days: int,
        target: int = DEFAULT_TARGET_COUNT,
    ) -> int:
        """Smallest ladder threshold yielding at most ``target`` qualifying entities."""

        since = self._clock() - timedelta(days=time_window_days)
        for threshold in THRESHOLD_LADDER:
            count = await self._telemetry.count_qualifying(
                media_type, since=since, min_unique_viewers=threshold
            )
            if count <= target:
                return threshold
        return THRESHOLD_LADDER[-1]

    async def get_preview_counts(self, params: PreviewCountsParams) -> PreviewCountsResult:
        now = self._clock()
        movies, series, movies_threshold, series_threshold = await asyncio.gather(
            self._telemetry.count_qualifying(
                "movies",
                since=now - timedelta(days=params.movies_time_window_days),
                min_unique_viewers=params.movies_min_viewers,
            ),
            self._telemetry.count_qualifying(
                "series",
                since=now - timedelta(days=params.series_time_window_days),
                min_unique_viewers=params.series_min_viewers,
            ),
            self.recommend_min_viewers("movies", params.movies_time_window_days),
            self.recommend_min_viewers("series", params.series_time_window_days),
        )
        return PreviewCountsResult(
            movies=movies,
            series=series,
            recommended_movies_min_viewers=movies_threshold,
            recommended_series_min_viewers=series_threshold,
        )
