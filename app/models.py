"""Pydantic models describing ranking configuration and Top Picks payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import normalize_language_codes

MediaType = Literal["movies", "series"]
PopularitySource = Literal[
    "local",
    "tmdb_popular",
    "tmdb_trending_day",
    "tmdb_trending_week",
    "tmdb_top_rated",
    "mdblist",
    "hybrid",
]
HybridExternalSource = Literal[
    "tmdb_popular",
    "tmdb_trending_day",
    "tmdb_trending_week",
    "tmdb_top_rated",
    "mdblist",
]
TMDBVariant = Literal["popular", "trending_day", "trending_week", "top_rated"]

MEDIA_TYPES: tuple[MediaType, ...] = ("movies", "series")
POPULARITY_SOURCES: tuple[str, ...] = (
    "local",
    "tmdb_popular",
    "tmdb_trending_day",
    "tmdb_trending_week",
    "tmdb_top_rated",
    "mdblist",
    "hybrid",
)
HYBRID_EXTERNAL_SOURCES: tuple[str, ...] = (
    "tmdb_popular",
    "tmdb_trending_day",
    "tmdb_trending_week",
    "tmdb_top_rated",
    "mdblist",
)
LEGACY_SOURCE_MAP: dict[str, str] = {"emby_history": "local"}

MDBLIST_SORTS: tuple[str, ...] = (
    "score",
    "score_average",
    "imdbrating",
    "imdbvotes",
    "imdbpopular",
    "tmdbpopular",
    "rtomatoes",
    "metacritic",
)
# Sorts where a lower value means more popular.
ASCENDING_MDBLIST_SORTS = frozenset({"imdbpopular", "tmdbpopular"})

UNLIMITED_RESULT_CAP = 10_000
DEFAULT_PREVIEW_EXTERNAL_SOURCE = "tmdb_popular"


def _normalize_source(value: object, *, default: str, allowed: tuple[str, ...]) -> str:
    if value is None:
        return default
    slug = str(value).strip().lower().replace("-", "_")
    if not slug:
        return default
    slug = LEGACY_SOURCE_MAP.get(slug, slug)
    if slug not in allowed:
        raise ValueError(f"Unknown popularity source: {value!r}")
    return slug


def _normalize_sort(value: object) -> str:
    if value is None:
        return "score"
    slug = str(value).strip().lower()
    if not slug:
        return "score"
    if slug not in MDBLIST_SORTS:
        raise ValueError(f"Unsupported MDBList sort: {value!r}")
    return slug


def sort_order_for(sort: str) -> Literal["asc", "desc"]:
    """Return the list order that puts the best items first for ``sort``."""

    return "asc" if sort in ASCENDING_MDBLIST_SORTS else "desc"


@dataclass(frozen=True, slots=True)
class TelemetryWeights:
    """Raw weights applied to viewers, plays and completion."""

    viewers: float
    plays: float
    completion: float

    def normalized(self) -> "TelemetryWeights":
        """Scale the weights so they sum to 1.0 (a third each when all zero)."""

        total = self.viewers + self.plays + self.completion
        if total <= 0:
            third = 1.0 / 3.0
            return TelemetryWeights(third, third, third)
        return TelemetryWeights(
            self.viewers / total,
            self.plays / total,
            self.completion / total,
        )


@dataclass(frozen=True, slots=True)
class LanguageFilter:
    """Allow-list of original-language codes."""

    languages: tuple[str, ...]
    include_unknown: bool = True

    def allows(self, language: str | None) -> bool:
        if not language:
            return self.include_unknown
        return language.strip().lower() in self.languages


def build_language_filter(
    languages: tuple[str, ...] | list[str], include_unknown: bool
) -> LanguageFilter | None:
    """Return a filter for a non-empty allow-list, else ``None``."""

    if not languages:
        return None
    return LanguageFilter(tuple(languages), include_unknown)


@dataclass(slots=True)
class ExternalCandidate:
    """An item as returned by an external provider, in native order."""

    position: int
    title: str
    year: int | None = None
    tmdb_id: str | None = None
    imdb_id: str | None = None
    tvdb_id: str | None = None
    poster_url: str | None = None
    overview: str | None = None
    score: float | None = None
    original_language: str | None = None
    genre_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RankingConfig:
    """Settings for ranking one media type, resolved once per call."""

    media_type: MediaType
    source: str
    hybrid_external_source: str
    count: int
    use_all_matches: bool
    time_window_days: int
    min_unique_viewers: int
    weights: TelemetryWeights
    hybrid_local_weight: float
    hybrid_external_weight: float
    list_id: int | None
    list_sort: str
    languages: tuple[str, ...]
    include_unknown_language: bool

    @property
    def result_limit(self) -> int:
        return UNLIMITED_RESULT_CAP if self.use_all_matches else self.count

    @property
    def language_filter(self) -> LanguageFilter | None:
        return build_language_filter(self.languages, self.include_unknown_language)


class TopPicksConfig(BaseModel):
    """Stored Top Picks settings for both media types."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True
    )

    movies_popularity_source: PopularitySource = "local"
    movies_hybrid_external_source: HybridExternalSource = "tmdb_popular"
    movies_time_window_days: int = Field(default=30, ge=1, le=3_650)
    movies_min_unique_viewers: int = Field(default=2, ge=1)
    movies_use_all_matches: bool = False
    movies_count: int = Field(default=10, ge=1, le=UNLIMITED_RESULT_CAP)
    mdblist_movies_list_id: int | None = Field(default=None, ge=1)
    mdblist_movies_sort: str = "score"
    movies_languages: tuple[str, ...] = ()
    movies_include_unknown_language: bool = True

    series_popularity_source: PopularitySource = "local"
    series_hybrid_external_source: HybridExternalSource = "tmdb_popular"
    series_time_window_days: int = Field(default=30, ge=1, le=3_650)
    series_min_unique_viewers: int = Field(default=2, ge=1)
    series_use_all_matches: bool = False
    series_count: int = Field(default=10, ge=1, le=UNLIMITED_RESULT_CAP)
    mdblist_series_list_id: int | None = Field(default=None, ge=1)
    mdblist_series_sort: str = "score"
    series_languages: tuple[str, ...] = ()
    series_include_unknown_language: bool = True

    unique_viewers_weight: float = Field(default=0.5, ge=0)
    play_count_weight: float = Field(default=0.3, ge=0)
    completion_weight: float = Field(default=0.2, ge=0)
    hybrid_local_weight: float = Field(default=0.5, ge=0)
    hybrid_external_weight: float = Field(default=0.5, ge=0)

    @field_validator("movies_popularity_source", "series_popularity_source", mode="before")
    @classmethod
    def _parse_source(cls, value: object) -> str:
        return _normalize_source(value, default="local", allowed=POPULARITY_SOURCES)

    @field_validator(
        "movies_hybrid_external_source", "series_hybrid_external_source", mode="before"
    )
    @classmethod
    def _parse_hybrid_source(cls, value: object) -> str:
        return _normalize_source(
            value, default="tmdb_popular", allowed=HYBRID_EXTERNAL_SOURCES
        )

    @field_validator("mdblist_movies_sort", "mdblist_series_sort", mode="before")
    @classmethod
    def _parse_sort(cls, value: object) -> str:
        return _normalize_sort(value)

    @field_validator("movies_languages", "series_languages", mode="before")
    @classmethod
    def _parse_languages(cls, value: object) -> tuple[str, ...]:
        return normalize_language_codes(value)

    def merged(self, overrides: Mapping[str, Any] | None) -> "TopPicksConfig":
        """Return a copy with non-null ``overrides`` applied and re-validated.

        Used for per-call overrides, where ``None`` means "use the stored value".
        """

        if not overrides:
            return self
        return self._apply(overrides, skip_none=True)

    def updated(self, changes: Mapping[str, Any] | None) -> "TopPicksConfig":
        """Return a copy with ``changes`` applied, explicit ``None`` included.

        Used when saving, so optional settings such as list ids can be cleared.
        """

        if not changes:
            return self
        return self._apply(changes, skip_none=False)

    def _apply(self, changes: Mapping[str, Any], *, skip_none: bool) -> "TopPicksConfig":
        aliases = {
            info.alias: name
            for name, info in type(self).model_fields.items()
            if info.alias
        }
        payload = self.model_dump()
        for key, value in changes.items():
            if value is None and skip_none:
                continue
            payload[aliases.get(key, key)] = value
        return TopPicksConfig.model_validate(payload)

    def ranking_config(self, media_type: MediaType) -> RankingConfig:
        """Project the stored settings onto a single media type."""

        if media_type not in MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {media_type!r}")
        prefix = media_type
        return RankingConfig(
            media_type=media_type,
            source=getattr(self, f"{prefix}_popularity_source"),
            hybrid_external_source=getattr(self, f"{prefix}_hybrid_external_source"),
            count=getattr(self, f"{prefix}_count"),
            use_all_matches=getattr(self, f"{prefix}_use_all_matches"),
            time_window_days=getattr(self, f"{prefix}_time_window_days"),
            min_unique_viewers=getattr(self, f"{prefix}_min_unique_viewers"),
            weights=TelemetryWeights(
                self.unique_viewers_weight,
                self.play_count_weight,
                self.completion_weight,
            ),
            hybrid_local_weight=self.hybrid_local_weight,
            hybrid_external_weight=self.hybrid_external_weight,
            list_id=getattr(self, f"mdblist_{prefix}_list_id"),
            list_sort=getattr(self, f"mdblist_{prefix}_sort"),
            languages=getattr(self, f"{prefix}_languages"),
            include_unknown_language=getattr(self, f"{prefix}_include_unknown_language"),
        )


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RankedResult(_CamelModel):
    """A ranked library entity with its contributing metrics."""

    id: str
    title: str
    year: int | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    overview: str | None = None
    genres: list[str] = Field(default_factory=list)
    community_rating: float | None = None
    tmdb_id: str | None = None
    imdb_id: str | None = None
    unique_viewers: int = 0
    play_count: int = 0
    completion_rate: float = 0.0
    popularity_score: float
    rank: int


class PopularMovie(RankedResult):
    path: str | None = None


class PopularSeries(RankedResult):
    """``play_count`` holds the distinct episodes watched across viewers."""

    network: str | None = None


class TopPicksResult(_CamelModel):
    movies: list[PopularMovie] = Field(default_factory=list)
    series: list[PopularSeries] = Field(default_factory=list)


class PreviewItem(_CamelModel):
    """A provider candidate shown in the admin preview."""

    id: str | None = None
    tmdb_id: str | None = None
    imdb_id: str | None = None
    title: str
    year: int | None = None
    poster_url: str | None = None
    rank: int
    position: int
    in_library: bool
    overview: str | None = None
    vote_average: float | None = None
    genre_ids: list[int] = Field(default_factory=list)
    original_language: str | None = None


class PreviewResult(_CamelModel):
    matched: list[PreviewItem] = Field(default_factory=list)
    missing: list[PreviewItem] = Field(default_factory=list)
    source: str
    media_type: MediaType


class PreviewOptions(_CamelModel):
    """Options for previewing a proposed source before saving it."""

    limit: int = Field(default=100, ge=1, le=1_000)
    hybrid_external_source: HybridExternalSource | None = None
    mdblist_list_id: int | None = Field(default=None, ge=1)
    mdblist_sort: str = "score"
    languages: tuple[str, ...] = ()
    include_unknown_language: bool = True

    @field_validator("hybrid_external_source", mode="before")
    @classmethod
    def _parse_hybrid_source(cls, value: object) -> str | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return _normalize_source(
            value, default="tmdb_popular", allowed=HYBRID_EXTERNAL_SOURCES
        )

    @field_validator("mdblist_sort", mode="before")
    @classmethod
    def _parse_sort(cls, value: object) -> str:
        return _normalize_sort(value)

    @field_validator("languages", mode="before")
    @classmethod
    def _parse_languages(cls, value: object) -> tuple[str, ...]:
        return normalize_language_codes(value)

    @property
    def language_filter(self) -> LanguageFilter | None:
        return build_language_filter(self.languages, self.include_unknown_language)


class PreviewCountsParams(_CamelModel):
    movies_min_viewers: int = Field(default=2, ge=1)
    movies_time_window_days: int = Field(default=30, ge=1, le=3_650)
    series_min_viewers: int = Field(default=2, ge=1)
    series_time_window_days: int = Field(default=30, ge=1, le=3_650)


class PreviewCountsResult(_CamelModel):
    movies: int
    series: int
    recommended_movies_min_viewers: int
    recommended_series_min_viewers: int


def normalize_popularity_source(value: object) -> str:
    """Validate a source name received outside of a config payload."""

    return _normalize_source(value, default="local", allowed=POPULARITY_SOURCES)


class PreviewRequest(PreviewOptions):
    """Preview options together with the source being previewed."""

    source: str = "local"

    @field_validator("source", mode="before")
    @classmethod
    def _parse_source(cls, value: object) -> str:
        return normalize_popularity_source(value)
