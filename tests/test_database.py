from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app import db_models  # noqa: F401 - registers the ORM tables
from app.database import Database
from app.models import TopPicksConfig
from app.services.config_store import TopPicksConfigStore


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a top_picks_config table predating hybrid and language settings."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE top_picks_config (
                        id INTEGER PRIMARY KEY,
                        movies_popularity_source VARCHAR(32),
                        movies_hybrid_external_source VARCHAR(32),
                        movies_time_window_days INTEGER,
                        movies_min_unique_viewers INTEGER,
                        movies_use_all_matches BOOLEAN,
                        movies_count INTEGER,
                        mdblist_movies_list_id INTEGER,
                        mdblist_movies_sort VARCHAR(32),
                        series_popularity_source VARCHAR(32),
                        series_hybrid_external_source VARCHAR(32),
                        series_time_window_days INTEGER,
                        series_min_unique_viewers INTEGER,
                        series_use_all_matches BOOLEAN,
                        series_count INTEGER,
                        mdblist_series_list_id INTEGER,
                        mdblist_series_sort VARCHAR(32),
                        unique_viewers_weight FLOAT,
                        play_count_weight FLOAT,
                        completion_weight FLOAT,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    """
                    INSERT INTO top_picks_config (
                        id, movies_popularity_source, movies_time_window_days,
                        movies_min_unique_viewers, movies_use_all_matches, movies_count,
                        series_popularity_source, series_time_window_days,
                        series_min_unique_viewers, series_use_all_matches, series_count,
                        unique_viewers_weight, play_count_weight, completion_weight
                    ) VALUES (
                        1, 'emby_history', 14, 3, 0, 12,
                        'tmdb_popular', 60, 2, 0, 20,
                        0.6, 0.2, 0.2
                    )
                    """
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_language_and_hybrid_columns(tmp_path) -> None:
    """Schema migrations should backfill columns added after the first release."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("top_picks_config")}
    finally:
        inspector_engine.dispose()

    assert {
        "hybrid_local_weight",
        "hybrid_external_weight",
        "movies_languages",
        "series_languages",
        "movies_include_unknown_language",
        "series_include_unknown_language",
    } <= columns


def test_legacy_row_loads_with_defaults(tmp_path) -> None:
    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    async def runner() -> TopPicksConfig:
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        try:
            await database.create_all()
            return await TopPicksConfigStore(database.session_factory).load()
        finally:
            await database.dispose()

    config = asyncio.run(runner())

    assert config.movies_popularity_source == "local"
    assert config.movies_time_window_days == 14
    assert config.movies_min_unique_viewers == 3
    assert config.movies_count == 12
    assert config.series_popularity_source == "tmdb_popular"
    assert config.hybrid_local_weight == 0.5
    assert config.movies_languages == ()
    assert config.movies_include_unknown_language is True
    assert config.mdblist_movies_sort == "score"


def test_config_store_round_trips_saved_config(tmp_path) -> None:
    async def runner() -> tuple[TopPicksConfig, TopPicksConfig]:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'config.db'}")
        try:
            await database.create_all()
            store = TopPicksConfigStore(database.session_factory)
            before = await store.load()
            await store.save(
                before.merged(
                    {
                        "moviesPopularitySource": "mdblist",
                        "mdblistMoviesListId": 42,
                        "moviesLanguages": "EN, fr",
                    }
                )
            )
            return before, await store.load()
        finally:
            await database.dispose()

    before, after = asyncio.run(runner())

    assert before == TopPicksConfig()
    assert after.movies_popularity_source == "mdblist"
    assert after.mdblist_movies_list_id == 42
    assert after.movies_languages == ("en", "fr")
    assert after.series_popularity_source == "local"
