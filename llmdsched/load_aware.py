"""Scorer that prefers pods with short waiting queues."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from llmdsched.types import PluginConfigError, PodMetrics, TypedName

logger = logging.getLogger(__name__)

LOAD_AWARE_TYPE = "load-aware-scorer"
QUEUE_THRESHOLD_DEFAULT = 128


class LoadAware:
    """Scores an empty queue 0.5, falling linearly to 0 at the queue threshold."""

    def __init__(self, queue_threshold: int = QUEUE_THRESHOLD_DEFAULT) -> None:
        if queue_threshold <= 0:
            logger.info(
                "queueThreshold %d should be positive, using default queue threshold %d",
                queue_threshold,
                QUEUE_THRESHOLD_DEFAULT,
            )
            queue_threshold = QUEUE_THRESHOLD_DEFAULT
        self.typed_name = TypedName(type=LOAD_AWARE_TYPE)
        self.queue_threshold = float(queue_threshold)

    def with_name(self, name: str) -> LoadAware:
        self.typed_name.name = name
        return self

    def score(self, cycle_state, request, pods: Iterable[PodMetrics] | None) -> dict[PodMetrics, float]:
        scores: dict[PodMetrics, float] = {}
        for pod in pods or ():
            waiting = float(pod.metrics.waiting_queue_size)
            if waiting == 0:
                scores[pod] = 0.5
            else:
                waiting = min(waiting, self.queue_threshold)
                scores[pod] = 0.5 * (1.0 - waiting / self.queue_threshold)
        return scores


def load_aware_factory(name: str, raw_parameters: Any, handle: Any) -> LoadAware:
    prefix = f"failed to parse the parameters of the '{LOAD_AWARE_TYPE}' scorer"
    data: Any = {}
    if isinstance(raw_parameters, Mapping):
        data = dict(raw_parameters)
    elif raw_parameters is not None:
        try:
            data = json.loads(raw_parameters)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as exc:
            raise PluginConfigError(f"{prefix} - {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PluginConfigError(f"{prefix} - expected a JSON object")
    threshold = data.get("threshold")
    if threshold is None:
        threshold = QUEUE_THRESHOLD_DEFAULT
    elif not isinstance(threshold, int) or isinstance(threshold, bool):
        raise PluginConfigError(f"{prefix} - field 'threshold' must be an integer")
    return LoadAware(threshold).with_name(name)