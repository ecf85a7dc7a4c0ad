"""Ranking library entities by local viewing activity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import Float, Select, case, cast, distinct, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Episode, Movie, Series, WatchHistory
from ..models import MediaType, RankedResult, TelemetryWeights
from .library import LibraryEntity, WatchStats, build_ranked_result

logger = logging.getLogger(__name__)

# Series plays count distinct episodes, which dwarf viewer counts.
SERIES_PLAY_SCALE = 0.1
UNKNOWN_COMPLETION = 0.5


@dataclass(slots=True)
class TelemetryAggregate:
    """Windowed viewing rollup for a single library entity."""

    entity: LibraryEntity
    unique_viewers: int
    play_count: int
    completion_rate: float


def play_scale_for(media_type: MediaType) -> float:
    return SERIES_PLAY_SCALE if media_type == "series" else 1.0


def score_aggregate(
    aggregate: TelemetryAggregate, weights: TelemetryWeights, *, play_scale: float = 1.0
) -> float:
    """Weighted score; ``weights`` are expected to be normalised already."""

    return (
        aggregate.unique_viewers * weights.viewers
        + aggregate.play_count * weights.plays * play_scale
        + aggregate.completion_rate * 100.0 * weights.completion
    )


def rank_aggregates(
    media_type: MediaType,
    aggregates: Iterable[TelemetryAggregate],
    weights: TelemetryWeights,
    limit: int,
) -> list[RankedResult]:
    """Score, sort and cap aggregates, assigning ranks from 1."""

    normalized = weights.normalized()
    play_scale = play_scale_for(media_type)
    scored = [
        (score_aggregate(aggregate, normalized, play_scale=play_scale), aggregate)
        for aggregate in aggregates
    ]
    # sorted() is stable, so ties keep the query order.
    scored.sort(key=lambda item: item[0], reverse=True)

    results: list[RankedResult] = []
    for rank, (score, aggregate) in enumerate(scored[: max(limit, 0)], start=1):
        results.append(
            build_ranked_result(
                media_type,
                aggregate.entity,
                popularity_score=round(score, 4),
                rank=rank,
                unique_viewers=aggregate.unique_viewers,
                play_count=aggregate.play_count,
                completion_rate=round(aggregate.completion_rate, 4),
            )
        )
    return results


class TelemetryRepository:
    """Aggregate queries over the ``watch_history`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def aggregate(
        self, media_type: MediaType, *, since: datetime, min_unique_viewers: int
    ) -> list[TelemetryAggregate]:
        """Return entities watched by at least ``min_unique_viewers`` since ``since``."""

        if media_type == "movies":
            query = self._movie_query(since, min_unique_viewers)
        else:
            query = self._series_query(since, min_unique_viewers)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()

        aggregates = [
            TelemetryAggregate(
                entity=entity,
                unique_viewers=int(viewers or 0),
                play_count=int(plays or 0),
                completion_rate=(
                    float(completion) if completion is not None else UNKNOWN_COMPLETION
                ),
            )
            for entity, viewers, plays, completion in rows
        ]
        logger.debug(
            "Aggregated %s %s with at least %s viewers since %s",
            len(aggregates),
            media_type,
            min_unique_viewers,
            since.isoformat(),
        )
        return aggregates

    async def count_qualifying(
        self, media_type: MediaType, *, since: datetime, min_unique_viewers: int
    ) -> int:
        """Count entities that would pass the viewer floor, without loading them."""

        if media_type == "movies":
            grouped = (
                select(WatchHistory.movie_id)
                .where(
                    WatchHistory.movie_id.is_not(None),
                    WatchHistory.last_played_at >= since,
                )
                .group_by(WatchHistory.movie_id)
                .having(func.count(distinct(WatchHistory.user_id)) >= min_unique_viewers)
            )
        else:
            grouped = (
                select(Episode.series_id)
                .join(WatchHistory, WatchHistory.episode_id == Episode.id)
                .where(WatchHistory.last_played_at >= since)
                .group_by(Episode.series_id)
                .having(func.count(distinct(WatchHistory.user_id)) >= min_unique_viewers)
            )

        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(grouped.subquery())
            )
            return int(result.scalar_one())

    async def lifetime_stats(
        self, media_type: MediaType, entity_ids: Sequence[str]
    ) -> dict[str, WatchStats]:
        """All-time viewer and play counts for the given entities."""

        if not entity_ids:
            return {}

        if media_type == "movies":
            query = (
                select(
                    WatchHistory.movie_id,
                    func.count(distinct(WatchHistory.user_id)),
                    func.count(WatchHistory.id),
                )
                .where(WatchHistory.movie_id.in_(list(entity_ids)))
                .group_by(WatchHistory.movie_id)
            )
        else:
            query = (
                select(
                    Episode.series_id,
                    func.count(distinct(WatchHistory.user_id)),
                    func.count(distinct(WatchHistory.episode_id)),
                )
                .join(WatchHistory, WatchHistory.episode_id == Episode.id)
                .where(Episode.series_id.in_(list(entity_ids)))
                .group_by(Episode.series_id)
            )

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()
        return {
            str(entity_id): WatchStats(unique_viewers=int(viewers), play_count=int(plays))
            for entity_id, viewers, plays in rows
        }

    @staticmethod
    def _movie_query(since: datetime, min_unique_viewers: int) -> Select:
        viewers = func.count(distinct(WatchHistory.user_id))
        return (
            select(
                Movie,
                viewers,
                func.count(WatchHistory.id),
                # Movies have no progress tracking, a play counts as finished.
                literal(1.0, Float),
            )
            .join(WatchHistory, WatchHistory.movie_id == Movie.id)
            .where(WatchHistory.last_played_at >= since)
            .group_by(Movie.id)
            .having(viewers >= min_unique_viewers)
            .order_by(Movie.id)
        )

    @staticmethod
    def _series_query(since: datetime, min_unique_viewers: int) -> Select:
        in_window = WatchHistory.last_played_at >= since

        per_viewer = (
            select(
                Episode.series_id.label("series_id"),
                WatchHistory.user_id.label("user_id"),
                func.count(distinct(WatchHistory.episode_id)).label("episodes"),
            )
            .join(Episode, Episode.id == WatchHistory.episode_id)
            .where(in_window)
            .group_by(Episode.series_id, WatchHistory.user_id)
            .subquery()
        )
        distinct_episodes = (
            select(
                Episode.series_id.label("series_id"),
                func.count(distinct(WatchHistory.episode_id)).label("episodes"),
            )
            .join(Episode, Episode.id == WatchHistory.episode_id)
            .where(in_window)
            .group_by(Episode.series_id)
            .subquery()
        )

        coverage = case(
            (
                Series.total_episodes > 0,
                case(
                    (per_viewer.c.episodes >= Series.total_episodes, 1.0),
                    else_=cast(per_viewer.c.episodes, Float)
                    / cast(Series.total_episodes, Float),
                ),
            ),
            else_=UNKNOWN_COMPLETION,
        )
        viewers = func.count(per_viewer.c.user_id)
        return (
            select(
                Series,
                viewers,
                func.max(distinct_episodes.c.episodes),
                func.avg(coverage),
            )
            .join(per_viewer, per_viewer.c.series_id == Series.id)
            .join(distinct_episodes, distinct_episodes.c.series_id == Series.id)
            .group_by(Series.id)
            .having(viewers >= min_unique_viewers)
            .order_by(Series.id)
        )
