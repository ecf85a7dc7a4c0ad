from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from app.database import Database
from app.db_models import Episode, Movie, Series, WatchHistory
from app.models import TelemetryWeights
from app.services.telemetry import (
    TelemetryAggregate,
    TelemetryRepository,
    rank_aggregates,
)

NOW = datetime(2024, 6, 1, 12, 0, 0)
RECENT = NOW - timedelta(days=1)
OLD = NOW - timedelta(days=60)
SINCE = NOW - timedelta(days=30)


def _movie_play(user: str, movie_id: str, when: datetime = RECENT) -> WatchHistory:
    return WatchHistory(user_id=user, media_type="movie", movie_id=movie_id, last_played_at=when)


def _episode_play(user: str, episode_id: str, when: datetime = RECENT) -> WatchHistory:
    return WatchHistory(
        user_id=user, media_type="episode", episode_id=episode_id, last_played_at=when
    )


async def _seed(database: Database) -> None:
    await database.create_all()
    async with database.session() as session:
        session.add_all(
            [
                Movie(id="movie-a", title="Movie A"),
                Movie(id="movie-b", title="Movie B"),
                Movie(id="movie-c", title="Movie C"),
                Series(id="show-s", title="Show S", total_episodes=4),
                Series(id="show-t", title="Show T"),
            ]
        )
        session.add_all(
            [Episode(id=f"s-e{i}", series_id="show-s", season_number=1, episode_number=i) for i in range(1, 5)]
        )
        session.add(Episode(id="t-e1", series_id="show-t", season_number=1, episode_number=1))
        await session.flush()

        plays = [_movie_play("u1", "movie-a") for _ in range(6)]
        plays += [_movie_play(user, "movie-a") for user in ("u2", "u3", "u4", "u5")]
        plays += [_movie_play(user, "movie-b") for user in ("u1", "u2")]
        # Outside the window.
        plays += [_movie_play(user, "movie-c", OLD) for user in ("u1", "u2", "u3")]

        plays += [_episode_play("u1", "s-e1"), _episode_play("u1", "s-e2")]
        plays += [_episode_play("u2", f"s-e{i}") for i in range(1, 5)]
        plays += [_episode_play("u2", "s-e1")]
        plays += [_episode_play("u1", "t-e1")]
        session.add_all(plays)
        await session.commit()


def _run(tmp_path, body):
    async def runner():
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}")
        try:
            await _seed(database)
            return await body(TelemetryRepository(database.session_factory))
        finally:
            await database.dispose()

    return asyncio.run(runner())


def test_movie_aggregation_applies_viewer_floor(tmp_path) -> None:
    async def body(repository: TelemetryRepository):
        return await repository.aggregate("movies", since=SINCE, min_unique_viewers=3)

    aggregates = _run(tmp_path, body)

    assert len(aggregates) == 1
    aggregate = aggregates[0]
    assert aggregate.entity.id == "movie-a"
    assert aggregate.unique_viewers == 5
    assert aggregate.play_count == 10
    assert aggregate.completion_rate == 1.0

    ranked = rank_aggregates("movies", aggregates, TelemetryWeights(0.5, 0.3, 0.2), 10)
    assert ranked[0].rank == 1
    assert ranked[0].popularity_score == pytest.approx(5 * 0.5 + 10 * 0.3 + 100 * 0.2)


def test_movie_aggregation_ignores_plays_outside_window(tmp_path) -> None:
    async def body(repository: TelemetryRepository):
        return await repository.aggregate("movies", since=SINCE, min_unique_viewers=1)

    ids = {aggregate.entity.id for aggregate in _run(tmp_path, body)}

    assert ids == {"movie-a", "movie-b"}


def test_series_completion_is_averaged_per_viewer(tmp_path) -> None:
    async def body(repository: TelemetryRepository):
        return await repository.aggregate("series", since=SINCE, min_unique_viewers=1)

    aggregates = {aggregate.entity.id: aggregate for aggregate in _run(tmp_path, body)}

    show = aggregates["show-s"]
    assert show.unique_viewers == 2
    assert show.play_count == 4
    assert show.completion_rate == pytest.approx(0.75)

    unknown_total = aggregates["show-t"]
    assert unknown_total.unique_viewers == 1
    assert unknown_total.completion_rate == pytest.approx(0.5)

    ranked = rank_aggregates(
        "series", list(aggregates.values()), TelemetryWeights(0.5, 0.3, 0.2), 10
    )
    assert [result.id for result in ranked] == ["show-s", "show-t"]
    assert ranked[0].popularity_score == pytest.approx(2 * 0.5 + 4 * 0.3 * 0.1 + 75 * 0.2)


def test_count_qualifying_and_lifetime_stats(tmp_path) -> None:
    async def body(repository: TelemetryRepository):
        return (
            await repository.count_qualifying("movies", since=SINCE, min_unique_viewers=2),
            await repository.count_qualifying("movies", since=SINCE, min_unique_viewers=6),
            await repository.count_qualifying("series", since=SINCE, min_unique_viewers=2),
            await repository.lifetime_stats("movies", ["movie-c", "movie-missing"]),
            await repository.lifetime_stats("series", ["show-s"]),
            await repository.lifetime_stats("movies", []),
        )

    movies_two, movies_six, series_two, movie_stats, series_stats, empty = _run(tmp_path, body)

    assert movies_two == 2
    assert movies_six == 0
    assert series_two == 1
    assert movie_stats["movie-c"].unique_viewers == 3
    assert movie_stats["movie-c"].play_count == 3
    assert "movie-missing" not in movie_stats
    assert series_stats["show-s"].play_count == 4
    assert empty == {}


def test_rank_aggregates_caps_and_keeps_ties_stable() -> None:
    aggregates = [
        TelemetryAggregate(Movie(id=f"m{i}", title=f"M{i}"), 2, 2, 1.0) for i in range(4)
    ]

    ranked = rank_aggregates("movies", aggregates, TelemetryWeights(0, 0, 0), 3)

    assert [result.id for result in ranked] == ["m0", "m1", "m2"]
    assert [result.rank for result in ranked] == [1, 2, 3]


def test_rank_aggregates_empty() -> None:
    assert rank_aggregates("series", [], TelemetryWeights(1, 1, 1), 10) == []
