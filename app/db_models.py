"""SQLAlchemy ORM models backing the library, telemetry and ranking config."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class _LibraryEntityColumns:
    """Columns shared by every library entity synced from the media server."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(512))
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    original_language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    backdrop_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    tmdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    imdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    tvdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)


class Movie(_LibraryEntityColumns, Base):
    """A movie present in the media server library."""

    __tablename__ = "movies"

    path: Mapped[str | None] = mapped_column(String(2048), nullable=True)


class Series(_LibraryEntityColumns, Base):
    """A series present in the media server library."""

    __tablename__ = "series"

    network: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_episodes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="series", cascade="all, delete-orphan"
    )


class Episode(Base):
    """A single episode belonging to a library series."""

    __tablename__ = "episodes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    series_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("series.id", ondelete="CASCADE"), index=True
    )
    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    series: Mapped[Series] = relationship(back_populates="episodes")


class WatchHistory(Base):
    """One user's playback record for a movie or an episode."""

    __tablename__ = "watch_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    media_type: Mapped[str] = mapped_column(String(16))
    movie_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("movies.id", ondelete="CASCADE"), nullable=True, index=True
    )
    episode_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("episodes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    last_played_at: Mapped[datetime] = mapped_column(DateTime, index=True)


class TopPicksConfigRecord(Base):
    """Persisted Top Picks ranking configuration (a single row, id 1)."""

    __tablename__ = "top_picks_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    movies_popularity_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    movies_hybrid_external_source: Mapped[str | None] = mapped_column(
        String(32), nullable=True
    )
    movies_time_window_days: Mapped[int] = mapped_column(Integer, default=30)
    movies_min_unique_viewers: Mapped[int] = mapped_column(Integer, default=2)
    movies_use_all_matches: Mapped[bool] = mapped_column(Boolean, default=False)
    movies_count: Mapped[int] = mapped_column(Integer, default=10)
    mdblist_movies_list_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mdblist_movies_sort: Mapped[str | None] = mapped_column(String(32), nullable=True)
    movies_languages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    movies_include_unknown_language: Mapped[bool | None] = mapped_column(
        Boolean, nullable=True, default=True
    )

    series_popularity_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    series_hybrid_external_source: Mapped[str | None] = mapped_column(
        String(32), nullable=True
    )
    series_time_window_days: Mapped[int] = mapped_column(Integer, default=30)
    series_min_unique_viewers: Mapped[int] = mapped_column(Integer, default=2)
    series_use_all_matches: Mapped[bool] = mapped_column(Boolean, default=False)
    series_count: Mapped[int] = mapped_column(Integer, default=10)
    mdblist_series_list_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mdblist_series_sort: Mapped[str | None] = mapped_column(String(32), nullable=True)
    series_languages: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    series_include_unknown_language: Mapped[bool | None] = mapped_column(
        Boolean, nullable=True, default=True
    )

    unique_viewers_weight: Mapped[float] = mapped_column(Float, default=0.5)
    play_count_weight: Mapped[float] = mapped_column(Float, default=0.3)
    completion_weight: Mapped[float] = mapped_column(Float, default=0.2)
    hybrid_local_weight: Mapped[float | None] = mapped_column(
        Float, nullable=True, default=0.5
    )
    hybrid_external_weight: Mapped[float | None] = mapped_column(
        Float, nullable=True, default=0.5
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
