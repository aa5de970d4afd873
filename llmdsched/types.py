"""Data model shared by the scheduler plugins: pods, requests, results and state."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any

PREFILL_POD_HEADER = "x-prefiller-host-port"
"""Header naming the prefill worker as ``<ip:port>``."""

DATA_PARALLEL_POD_HEADER = "x-data-parallel-host-port"
"""Header naming the data-parallel worker as ``<ip:port>``."""


class StateNotFoundError(LookupError):
    """Raised when a state key is missing from a cycle or plugin state."""


class PluginConfigError(ValueError):
    """Raised when a plugin cannot be built from its parameters."""


class SchedulingError(RuntimeError):
    """Raised when scheduling results cannot be produced."""


@dataclass(frozen=True, order=True)
class NamespacedName:
    """A namespace and name pair identifying a pod."""

    namespace: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class Pod:
    """A model-server endpoint."""

    namespaced_name: NamespacedName = field(default_factory=NamespacedName)
    address: str = ""
    port: str = ""
    labels: dict[str, str] | None = field(default_factory=dict)

    def clone(self) -> Pod:
        return replace(self, labels=dict(self.labels or {}))

    @property
    def host_port(self) -> str:
        """The pod's address and port joined as ``host:port`` (IPv6 hosts bracketed)."""
        host = f"[{self.address}]" if ":" in self.address else self.address
        return f"{host}:{self.port}"


@dataclass
class Metrics:
    """Load metrics reported by a pod."""

    waiting_queue_size: int = 0
    running_queue_size: int = 0
    kv_cache_usage_percent: float = 0.0

    def clone(self) -> Metrics:
        return replace(self)


@dataclass(eq=False)
class PodMetrics:
    """A pod together with its metrics; hashed by identity so it can key score maps."""

    pod: Pod = field(default_factory=Pod)
    metrics: Metrics = field(default_factory=Metrics)


@dataclass
class TypedName:
    """The type and instance name of a plugin."""

    type: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.name}/{self.type}"


@dataclass
class CompletionsRequest:
    prompt: str = ""


@dataclass
class ChatCompletionsRequest:
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class LLMRequestBody:
    completions: CompletionsRequest | None = None
    chat_completions: ChatCompletionsRequest | None = None


@dataclass
class LLMRequest:
    request_id: str = ""
    target_model: str = ""
    body: LLMRequestBody | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ProfileRunResult:
    target_pods: list[PodMetrics] = field(default_factory=list)


@dataclass
class SchedulingResult:
    """Results per profile; a failed profile run maps to ``None``."""

    profile_results: dict[str, ProfileRunResult | None] = field(default_factory=dict)
    primary_profile_name: str = ""


@dataclass
class Response:
    request_id: str = ""
    headers: dict[str, str] | None = None


@dataclass
class PrefixCacheState:
    """Prefix-cache scheduling state: matched block counts per server."""

    prefix_cache_servers: dict[NamespacedName, int] = field(default_factory=dict)


class CycleState:
    """Key/value state that lives for one scheduling cycle."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def write(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def read(self, key: str) -> Any:
        with self._lock:
            try:
                return self._data[key]
            except KeyError:
                raise StateNotFoundError(f"state key '{key}' not found") from None


class PluginState:
    """Per-request plugin state, kept between scheduling and request handling."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def write(self, request_id: str, key: str, value: Any) -> None:
        with self._lock:
            self._data.setdefault(request_id, {})[key] = value

    def read(self, request_id: str, key: str) -> Any:
        with self._lock:
            try:
                return self._data[request_id][key]
            except KeyError:
                raise StateNotFoundError(
                    f"state key '{key}' not found for request '{request_id}'"
                ) from None

    def delete(self, request_id: str) -> None:
        with self._lock:
            self._data.pop(request_id, None)