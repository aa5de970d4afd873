"""Helpers shared by scorer plugins."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

from llmdsched.types import PodMetrics

_MAX_INT = (1 << 63) - 1


def get_min_max(scores: Mapping[str, int]) -> tuple[int, int]:
    """Return the lowest and highest score; an empty map gives (max int, -1)."""
    min_score, max_score = _MAX_INT, -1
    for score in scores.values():
        min_score = min(min_score, score)
        max_score = max(max_score, score)
    return min_score, max_score


def indexed_scores_to_normalized_scored_pods(
    pods: Iterable[PodMetrics] | None,
    pod_to_key: Callable[[PodMetrics], str | None],
    scores: Mapping[str, int],
) -> dict[PodMetrics, float]:
    """Normalize key-indexed scores into the 0-1 range per pod.

    Pods whose key cannot be derived (``pod_to_key`` returns ``None``) are left out;
    pods with no score get 0.0.
    """
    min_score, max_score = get_min_max(scores)
    scored: dict[PodMetrics, float] = {}
    for pod in pods or ():
        key = pod_to_key(pod)
        if key is None:
            continue
        if key not in scores:
            scored[pod] = 0.0
        elif min_score == max_score:
            scored[pod] = 1.0
        else:
            scored[pod] = (scores[key] - min_score) / (max_score - min_score)
    return scored