"""Scorer that spreads cold requests across pods in least-recently-used order."""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from llmdsched.types import (
    CycleState,
    LLMRequest,
    PluginConfigError,
    PluginState,
    PodMetrics,
    PrefixCacheState,
    SchedulingResult,
    StateNotFoundError,
    TypedName,
)

logger = logging.getLogger(__name__)

NO_HIT_LRU_TYPE = "no-hit-lru-scorer"
PREFIX_CACHE_PLUGIN_TYPE = "prefix-cache-scorer"
DEFAULT_LRU_SIZE = 1024


@dataclass
class NoHitLRUParameters:
    """Parameters of the no-hit LRU scorer.

    ``prefix_plugin_name`` names the prefix-cache plugin whose state is read;
    ``lru_size`` bounds the number of pods tracked.
    """

    prefix_plugin_name: str = ""
    lru_size: int = 0


@dataclass(frozen=True)
class _ColdRequestState:
    is_cold: bool


class NoHitLRU:
    """Favours pods that least recently received a cold (no prefix-cache hit) request."""

    def __init__(self, params: NoHitLRUParameters | None = None) -> None:
        prefix_plugin_name = PREFIX_CACHE_PLUGIN_TYPE
        lru_size = DEFAULT_LRU_SIZE
        if params is not None:
            if params.prefix_plugin_name:
                prefix_plugin_name = params.prefix_plugin_name
            if params.lru_size > 0:
                lru_size = params.lru_size

        self.typed_name = TypedName(type=NO_HIT_LRU_TYPE)
        self.prefix_plugin_name = prefix_plugin_name
        self.lru_size = lru_size
        self._lru: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        self._plugin_state = PluginState()

    def with_name(self, name: str) -> NoHitLRU:
        self.typed_name.name = name
        return self

    def _is_cold_request(self, cycle_state: CycleState | None) -> bool:
        if cycle_state is None:
            logger.debug("No cycle state, treating as cold request for LRU optimization")
            return True
        try:
            state = cycle_state.read(self.prefix_plugin_name)
        except StateNotFoundError as exc:
            logger.debug(
                "No prefix cache state found, treating as cold request for LRU optimization: %s", exc
            )
            return True
        if not isinstance(state, PrefixCacheState):
            logger.debug("Prefix cache state has an unexpected type, treating as cold request")
            return True
        return not state.prefix_cache_servers

    def _lru_positions(self) -> dict[str, int]:
        with self._lock:
            return {key: position for position, key in enumerate(self._lru)}

    def _score_cold(self, pods: list[PodMetrics]) -> dict[PodMetrics, float]:
        total = len(pods)
        if total == 1:
            return {pods[0]: 1.0}
        scores: dict[PodMetrics, float] = {}
        if total <= 1:
            return scores

        positions = self._lru_positions()
        used = [pod for pod in pods if str(pod.pod.namespaced_name) in positions]
        never_used = [pod for pod in pods if str(pod.pod.namespaced_name) not in positions]

        for index, pod in enumerate(never_used):
            scores[pod] = 1.0 - index / (total - 1)
        for pod in used:
            # LRU order is oldest first; never-used pods always rank ahead.
            rank = len(never_used) + positions[str(pod.pod.namespaced_name)]
            scores[pod] = max(1.0 - rank / (total - 1), 0.0)
        return scores

    def score(
        self, cycle_state: CycleState | None, request: LLMRequest | None, pods: Iterable[PodMetrics] | None
    ) -> dict[PodMetrics, float]:
        """Neutral 0.5 scores on a cache hit; LRU-ranked scores for a cold request."""
        pods = list(pods or ())
        is_cold = self._is_cold_request(cycle_state)
        request_id = request.request_id if request is not None else ""
        self._plugin_state.write(request_id, str(self.typed_name), _ColdRequestState(is_cold))

        if not is_cold:
            logger.debug("Cache hit detected, returning neutral scores")
            return {pod: 0.5 for pod in pods}
        logger.debug("Cold request detected, scoring pods by LRU")
        return self._score_cold(pods)

    def pre_request(self, request: LLMRequest, scheduling_result: SchedulingResult | None) -> None:
        """For cold requests, mark the primary target pod as most recently used."""
        if scheduling_result is None or not scheduling_result.profile_results:
            logger.debug("No scheduling result available")
            return

        try:
            cold_state = self._plugin_state.read(request.request_id, str(self.typed_name))
        except StateNotFoundError as exc:
            cold_state = None
            logger.debug("No cold request state found, treating as non-cold request: %s", exc)
        finally:
            self._plugin_state.delete(request.request_id)

        if cold_state is None:
            return
        if not cold_state.is_cold:
            logger.debug("Not a cold request, skipping LRU update")
            return

        primary = scheduling_result.profile_results.get(scheduling_result.primary_profile_name)
        if primary is None or not primary.target_pods:
            logger.debug("No target pod in primary profile")
            return

        pod_name = str(primary.target_pods[0].pod.namespaced_name)
        with self._lock:
            self._lru[pod_name] = None
            self._lru.move_to_end(pod_name)
            while len(self._lru) > self.lru_size:
                self._lru.popitem(last=False)
        logger.debug("Updated LRU cache for cold request: pod %s, request %s", pod_name, request.request_id)


def no_hit_lru_factory(name: str, raw_parameters: Any, handle: Any) -> NoHitLRU:
    prefix = f"failed to parse the parameters of the '{NO_HIT_LRU_TYPE}' scorer"
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

    plugin_name = data.get("prefixPluginName")
    if plugin_name is None:
        plugin_name = ""
    elif not isinstance(plugin_name, str):
        raise PluginConfigError(f"{prefix} - field 'prefixPluginName' must be a string")
    lru_size = data.get("lruSize")
    if lru_size is None:
        lru_size = 0
    elif not isinstance(lru_size, int) or isinstance(lru_size, bool):
        raise PluginConfigError(f"{prefix} - field 'lruSize' must be an integer")

    params = NoHitLRUParameters(
        prefix_plugin_name=plugin_name or PREFIX_CACHE_PLUGIN_TYPE,
        lru_size=lru_size,
    )
    return NoHitLRU(params).with_name(name)