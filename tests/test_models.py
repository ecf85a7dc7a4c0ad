import pytest
from pydantic import ValidationError

from app.models import (
    LanguageFilter,
    PreviewOptions,
    PreviewRequest,
    RankedResult,
    TelemetryWeights,
    TopPicksConfig,
    UNLIMITED_RESULT_CAP,
    build_language_filter,
    sort_order_for,
)


def test_weights_normalize_to_one():
    weights = TelemetryWeights(0.5, 0.3, 0.2).normalized()
    assert weights.viewers + weights.plays + weights.completion == pytest.approx(1.0)

    scaled = TelemetryWeights(2, 1, 1).normalized()
    assert scaled.viewers == pytest.approx(0.5)
    assert scaled.plays == pytest.approx(0.25)


def test_all_zero_weights_split_evenly():
    weights = TelemetryWeights(0, 0, 0).normalized()
    assert weights.viewers == pytest.approx(1 / 3)
    assert weights.plays == pytest.approx(1 / 3)
    assert weights.completion == pytest.approx(1 / 3)


def test_language_filter_allows_listed_and_unknown():
    language_filter = LanguageFilter(("en", "fr"), include_unknown=True)
    assert language_filter.allows("EN")
    assert not language_filter.allows("ko")
    assert language_filter.allows(None)

    strict = LanguageFilter(("en",), include_unknown=False)
    assert not strict.allows(None)
    assert not strict.allows("")


def test_empty_language_list_disables_filter():
    assert build_language_filter((), include_unknown=False) is None
    assert build_language_filter(("en",), include_unknown=True) == LanguageFilter(("en",), True)


def test_sort_order_for_popularity_ranks_is_ascending():
    assert sort_order_for("imdbpopular") == "asc"
    assert sort_order_for("tmdbpopular") == "asc"
    assert sort_order_for("score") == "desc"
    assert sort_order_for("imdbrating") == "desc"


def test_config_accepts_legacy_source_name():
    config = TopPicksConfig(moviesPopularitySource="emby_history")
    assert config.movies_popularity_source == "local"


def test_config_rejects_unknown_source_and_negative_count():
    with pytest.raises(ValidationError):
        TopPicksConfig(moviesPopularitySource="netflix")
    with pytest.raises(ValidationError):
        TopPicksConfig(moviesCount=-1)
    with pytest.raises(ValidationError):
        TopPicksConfig(mdblistMoviesSort="alphabetical")


def test_merged_skips_none_and_accepts_both_key_styles():
    base = TopPicksConfig(moviesCount=15)

    merged = base.merged(
        {"moviesCount": None, "series_count": 7, "seriesLanguages": "en,ja"}
    )

    assert merged.movies_count == 15
    assert merged.series_count == 7
    assert merged.series_languages == ("en", "ja")
    assert base.series_count == 10


def test_merged_rejects_unknown_keys():
    with pytest.raises(ValidationError):
        TopPicksConfig().merged({"catalogCount": 3})


def test_updated_applies_explicit_none():
    base = TopPicksConfig(mdblistMoviesListId=7, moviesPopularitySource="mdblist")

    cleared = base.updated({"mdblistMoviesListId": None})

    assert cleared.mdblist_movies_list_id is None
    assert cleared.movies_popularity_source == "mdblist"
    assert base.merged({"mdblistMoviesListId": None}).mdblist_movies_list_id == 7


def test_ranking_config_projects_media_type():
    config = TopPicksConfig(
        seriesPopularitySource="hybrid",
        seriesHybridExternalSource="mdblist",
        mdblistSeriesListId=9,
        mdblistSeriesSort="imdbpopular",
        seriesUseAllMatches=True,
        seriesLanguages=["en"],
        seriesIncludeUnknownLanguage=False,
    )

    ranking = config.ranking_config("series")

    assert ranking.source == "hybrid"
    assert ranking.hybrid_external_source == "mdblist"
    assert ranking.list_id == 9
    assert ranking.result_limit == UNLIMITED_RESULT_CAP
    assert ranking.language_filter == LanguageFilter(("en",), False)

    movies = config.ranking_config("movies")
    assert movies.source == "local"
    assert movies.result_limit == 10
    assert movies.language_filter is None


def test_ranking_config_rejects_unknown_media_type():
    with pytest.raises(ValueError):
        TopPicksConfig().ranking_config("books")  # type: ignore[arg-type]


def test_preview_options_defaults_and_validation():
    options = PreviewOptions()
    assert options.limit == 100
    assert options.language_filter is None

    with pytest.raises(ValidationError):
        PreviewOptions(limit=0)

    request = PreviewRequest.model_validate({"source": "emby_history", "languages": "fr"})
    assert request.source == "local"
    assert request.language_filter == LanguageFilter(("fr",), True)


def test_ranked_result_serializes_camel_case():
    result = RankedResult(id="m1", title="Heat", popularity_score=12.5, rank=1)
    payload = result.model_dump(by_alias=True)
    assert payload["popularityScore"] == 12.5
    assert payload["uniqueViewers"] == 0
    assert "completionRate" in payload
