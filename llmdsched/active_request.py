"""Scorer that prefers pods serving fewer in-flight requests."""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from llmdsched.types import (
    LLMRequest,
    PluginConfigError,
    Pod,
    PodMetrics,
    Response,
    SchedulingResult,
    TypedName,
)

logger = logging.getLogger(__name__)

ACTIVE_REQUEST_TYPE = "active-request-scorer"
DEFAULT_REQUEST_TIMEOUT = 120.0
"""Seconds after which an open request is considered stale."""

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "\u00b5s": 1e-6,
    "\u03bcs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_COMPONENT = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"30s"``, ``"1m"`` or ``"1h30m"`` into seconds."""
    if not isinstance(text, str):
        raise ValueError(f"invalid duration {text!r}")
    rest = text
    sign = 1.0
    if rest[:1] in ("+", "-") and rest:
        sign = -1.0 if rest[0] == "-" else 1.0
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(f"invalid duration {text!r}")
    total = 0.0
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    return sign * total


@dataclass
class ActiveRequestParameters:
    """Parameters of the active-request scorer.

    ``request_timeout`` is a duration string such as ``"30s"``, ``"1m"`` or ``"2h"``;
    a request in flight for longer is dropped.
    """

    request_timeout: str = ""


@dataclass(frozen=True)
class _RequestEntry:
    pod_name: str
    request_id: str

    def __str__(self) -> str:
        return f"{self.pod_name}.{self.request_id}"


class ActiveRequest:
    """Tracks in-flight requests per pod and scores idle pods highest."""

    def __init__(self, params: ActiveRequestParameters | None = None) -> None:
        timeout = DEFAULT_REQUEST_TIMEOUT
        if params is not None and params.request_timeout:
            try:
                parsed = parse_duration(params.request_timeout)
            except ValueError as exc:
                logger.error("Invalid request timeout duration, using default request timeout: %s", exc)
            else:
                if parsed <= 0:
                    logger.error("Invalid request timeout duration, using default request timeout")
                else:
                    timeout = parsed
                    logger.info("Using request timeout %ss", timeout)

        self.typed_name = TypedName(type=ACTIVE_REQUEST_TYPE)
        self.request_timeout = timeout
        self._lock = threading.RLock()
        self._requests: dict[str, tuple[_RequestEntry, float]] = {}
        self._pod_counts: dict[str, int] = {}
        self._stop = threading.Event()
        self._cleaner = threading.Thread(target=self._clean_periodically, daemon=True)
        self._cleaner.start()

    def __enter__(self) -> ActiveRequest:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def with_name(self, name: str) -> ActiveRequest:
        self.typed_name.name = name
        return self

    def score(self, cycle_state, request, pods: Iterable[PodMetrics] | None) -> dict[PodMetrics, float]:
        """Score pods in 0-1: no in-flight requests gives 1.0, the busiest pod 0.0."""
        with self._lock:
            counts = dict(self._pod_counts)
        max_count = max(counts.values(), default=0)

        scores: dict[PodMetrics, float] = {}
        for pod in pods or ():
            count = counts.get(str(pod.pod.namespaced_name))
            if count is None or count == 0 or max_count == 0:
                scores[pod] = 1.0
            else:
                scores[pod] = (max_count - count) / max_count
        logger.debug("Scored pods: %s", scores)
        return scores

    def pre_request(self, request: LLMRequest, scheduling_result: SchedulingResult) -> None:
        """Record the request against the first target pod of every profile result."""
        for result in scheduling_result.profile_results.values():
            if result is None or not result.target_pods:
                continue
            entry = _RequestEntry(str(result.target_pods[0].pod.namespaced_name), request.request_id)
            with self._lock:
                self._requests[str(entry)] = (entry, time.monotonic() + self.request_timeout)
                self._pod_counts[entry.pod_name] = self._pod_counts.get(entry.pod_name, 0) + 1
            logger.debug("Added request to cache: %s", entry)

    def response_complete(
        self, request: LLMRequest, response: Response | None, target_pod: Pod | None
    ) -> None:
        """Forget the request once its response has been sent."""
        if target_pod is None:
            logger.debug("Skipping ResponseComplete because targetPod is nil")
            return
        entry = _RequestEntry(str(target_pod.namespaced_name), request.request_id)
        with self._lock:
            found = self._requests.pop(str(entry), None)
            if found is not None:
                self._decrement(entry.pod_name)
        if found is not None:
            logger.debug("Removed request from cache: %s", entry)
        else:
            logger.debug("Request not found in cache: %s", entry)

    def delete_expired(self) -> None:
        """Drop requests whose timeout has passed and release their pod counts."""
        now = time.monotonic()
        with self._lock:
            expired = [key for key, (_, deadline) in self._requests.items() if deadline <= now]
            for key in expired:
                entry, _ = self._requests.pop(key)
                self._decrement(entry.pod_name)

    def has_request(self, key: str) -> bool:
        """Whether a live request is tracked under ``<pod>.<request id>``."""
        with self._lock:
            item = self._requests.get(key)
            return item is not None and item[1] > time.monotonic()

    def pod_count(self, pod_name: str) -> int:
        """Number of in-flight requests tracked for the pod."""
        with self._lock:
            return self._pod_counts.get(pod_name, 0)

    def close(self) -> None:
        """Stop the background cleanup."""
        self._stop.set()

    def _decrement(self, pod_name: str) -> None:
        count = self._pod_counts.get(pod_name)
        if count is None:
            return
        if count <= 1:
            del self._pod_counts[pod_name]
        else:
            self._pod_counts[pod_name] = count - 1

    def _clean_periodically(self) -> None:
        while not self._stop.wait(self.request_timeout):
            self.delete_expired()


def _load_parameters(raw: Any) -> dict[str, Any]:
    prefix = f"failed to parse the parameters of the '{ACTIVE_REQUEST_TYPE}' scorer"
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as exc:
        raise PluginConfigError(f"{prefix} - {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PluginConfigError(f"{prefix} - expected a JSON object")
    return data


def active_request_factory(name: str, raw_parameters: Any, handle: Any) -> ActiveRequest:
    data = _load_parameters(raw_parameters)
    timeout = data.get("requestTimeout")
    if timeout is None:
        timeout = ""
    elif not isinstance(timeout, str):
        raise PluginConfigError(
            f"failed to parse the parameters of the '{ACTIVE_REQUEST_TYPE}' scorer - "
            "field 'requestTimeout' must be a string"
        )
    return ActiveRequest(ActiveRequestParameters(request_timeout=timeout)).with_name(name)