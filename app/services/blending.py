"""Blending a local ranking with an external one."""

from __future__ import annotations

import logging
from typing import Sequence

from ..models import RankedResult

logger = logging.getLogger(__name__)

NORMALIZED_SCALE = 100.0


def _max_score(results: Sequence[RankedResult]) -> float:
    # Floor of 1 keeps empty or all-zero sets from dividing by zero.
    return max([1.0, *(result.popularity_score for result in results)])


def normalize_scores(results: Sequence[RankedResult]) -> dict[str, float]:
    """Map each entity id to its score on a 0-100 scale relative to the set maximum."""

    top = _max_score(results)
    normalized: dict[str, float] = {}
    for result in results:
        normalized.setdefault(result.id, result.popularity_score / top * NORMALIZED_SCALE)
    return normalized


def blend_rankings(
    local: Sequence[RankedResult],
    external: Sequence[RankedResult],
    *,
    local_weight: float,
    external_weight: float,
    limit: int,
) -> list[RankedResult]:
    """Combine two independently scored rankings into one.

    Both sides are rescaled to 0-100 against their own maximum. An entity
    missing from one side scores 0 there. The weights are used as given, so
    an empty external side discounts every entity by ``external_weight``
    without changing the local order.
    """

    local_scores = normalize_scores(local)
    external_scores = normalize_scores(external)

    # Local results win for the carried metrics when an entity is on both sides.
    entities: dict[str, RankedResult] = {}
    for result in (*local, *external):
        entities.setdefault(result.id, result)

    blended = [
        (
            local_scores.get(entity_id, 0.0) * local_weight
            + external_scores.get(entity_id, 0.0) * external_weight,
            result,
        )
        for entity_id, result in entities.items()
    ]
    blended.sort(key=lambda item: item[0], reverse=True)

    logger.debug(
        "Blended %s local and %s external results into %s entities",
        len(local),
        len(external),
        len(blended),
    )
    return [
        result.model_copy(update={"popularity_score": round(score, 4), "rank": rank})
        for rank, (score, result) in enumerate(blended[: max(limit, 0)], start=1)
    ]
