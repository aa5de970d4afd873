"""Profile handlers deciding which scheduler profiles run and how their results combine."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from llmdsched.types import (
    DATA_PARALLEL_POD_HEADER,
    LLMRequest,
    PluginConfigError,
    PodMetrics,
    PrefixCacheState,
    ProfileRunResult,
    SchedulingError,
    SchedulingResult,
    StateNotFoundError,
    TypedName,
)

logger = logging.getLogger(__name__)

DATA_PARALLEL_PROFILE_HANDLER_TYPE = "data-parallel-profile-handler"
PD_PROFILE_HANDLER_TYPE = "pd-profile-handler"

PREFIX_CACHE_PLUGIN_TYPE = "prefix-cache-scorer"
DEFAULT_HASH_BLOCK_SIZE = 64
DEFAULT_PRIMARY_PORT = 8000
DEFAULT_DECODE_PROFILE = "decode"
DEFAULT_PREFILL_PROFILE = "prefill"
DEFAULT_PREFIX_PLUGIN_NAME = PREFIX_CACHE_PLUGIN_TYPE


def _load_parameters(raw: Any, plugin_type: str) -> dict[str, Any]:
    prefix = f"failed to parse the parameters of the '{plugin_type}' profile handler"
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


def _field(data: Mapping[str, Any], key: str, kind: type, default: Any, plugin_type: str) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or isinstance(value, bool):
        raise PluginConfigError(
            f"failed to parse the parameters of the '{plugin_type}' profile handler - "
            f"field '{key}' must be of type {kind.__name__}"
        )
    return value


def _json_compact(value: Any) -> bytes:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escape in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escape)
    return text.encode("utf-8")


def get_user_input_bytes(request: LLMRequest) -> bytes:
    """Return the prompt, or the serialized chat messages, as bytes."""
    body = request.body
    if body is None:
        raise SchedulingError("request has no body")
    if body.completions is not None:
        return body.completions.prompt.encode("utf-8")
    if body.chat_completions is None:
        raise SchedulingError("request body holds neither completions nor chat-completions")
    try:
        return _json_compact(body.chat_completions.messages)
    except (TypeError, ValueError) as exc:
        raise SchedulingError(f"failed to marshal chat-completions messages: {exc}") from exc


class DataParallelProfileHandler:
    """Runs a single profile and rewrites target ports to the primary data-parallel port."""

    def __init__(self, primary_port: int = DEFAULT_PRIMARY_PORT) -> None:
        self.typed_name = TypedName(type=DATA_PARALLEL_PROFILE_HANDLER_TYPE)
        self.primary_port = str(primary_port)

    def with_name(self, name: str) -> DataParallelProfileHandler:
        self.typed_name.name = name
        return self

    def pick(self, cycle_state, request, profiles: Mapping[str, Any], profile_results: Mapping[str, Any]) -> dict[str, Any]:
        if len(profiles) == len(profile_results):
            return {}
        return dict(profiles)

    def process_results(
        self, cycle_state, request: LLMRequest, profile_results: Mapping[str, ProfileRunResult | None]
    ) -> SchedulingResult:
        if len(profile_results) != 1:
            raise SchedulingError(
                "data parallel profile handler is intended to be used with a single profile, "
                "failed to process multiple profiles"
            )
        (profile_name, result), = profile_results.items()
        if result is None:
            raise SchedulingError(f"failed to run scheduler profile '{profile_name}'")

        request.headers[DATA_PARALLEL_POD_HEADER] = result.target_pods[0].pod.host_port

        targets = []
        for target in result.target_pods:
            pod = target.pod.clone()
            pod.port = self.primary_port
            targets.append(PodMetrics(pod=pod, metrics=target.metrics.clone()))

        return SchedulingResult(
            profile_results={profile_name: ProfileRunResult(target_pods=targets)},
            primary_profile_name=profile_name,
        )


def data_parallel_profile_handler_factory(name: str, raw_parameters: Any, handle: Any) -> DataParallelProfileHandler:
    data = _load_parameters(raw_parameters, DATA_PARALLEL_PROFILE_HANDLER_TYPE)
    port = _field(data, "primaryPort", int, DEFAULT_PRIMARY_PORT, DATA_PARALLEL_PROFILE_HANDLER_TYPE)
    return DataParallelProfileHandler(port).with_name(name)


class PdProfileHandler:
    """Runs the decode profile, then the prefill profile when the uncached prompt is long enough."""

    def __init__(
        self,
        prefill_profile: str,
        decode_profile: str,
        prefix_plugin_name: str,
        pd_threshold: int,
        hash_block_size: int,
    ) -> None:
        self.typed_name = TypedName(type=PD_PROFILE_HANDLER_TYPE)
        self.prefix_plugin_typed_name = TypedName(type=PREFIX_CACHE_PLUGIN_TYPE, name=prefix_plugin_name)
        self.decode_profile = decode_profile
        self.prefill_profile = prefill_profile
        self.pd_threshold = pd_threshold
        self.hash_block_size = hash_block_size

    def with_name(self, name: str) -> PdProfileHandler:
        self.typed_name.name = name
        return self

    def _read_prefix_state(self, cycle_state) -> PrefixCacheState:
        key = str(self.prefix_plugin_typed_name)
        if cycle_state is None:
            raise StateNotFoundError(f"state key '{key}' not found")
        state = cycle_state.read(key)
        if not isinstance(state, PrefixCacheState):
            raise StateNotFoundError(f"state key '{key}' does not hold prefix cache state")
        return state

    def pick(
        self,
        cycle_state,
        request: LLMRequest,
        profiles: Mapping[str, Any],
        profile_results: Mapping[str, ProfileRunResult | None],
    ) -> dict[str, Any]:
        if self.decode_profile not in profile_results:
            return {self.decode_profile: profiles.get(self.decode_profile)}

        decode_result = profile_results[self.decode_profile]
        if len(profiles) == len(profile_results) or decode_result is None:
            return {}

        if self.pd_threshold > 0:
            try:
                user_input = get_user_input_bytes(request)
            except SchedulingError:
                logger.debug("Failed to get user input bytes", exc_info=True)
                return {}
            length = len(user_input)

            hit_percentage = 0.0
            try:
                prefix_state = self._read_prefix_state(cycle_state)
            except StateNotFoundError as exc:
                logger.error("unable to read prefix state: %s", exc)
            else:
                decode_pod = decode_result.target_pods[0].pod.namespaced_name
                # The first hit is always the model name.
                hit_prefix = max(prefix_state.prefix_cache_servers.get(decode_pod, 0) - 1, 0)
                hit_percentage = (
                    float("nan") if length == 0 else hit_prefix * self.hash_block_size / length
                )
                logger.debug(
                    "Computed hit percentage for prefix cache: %s (prompt length %d)",
                    hit_percentage,
                    length,
                )

            if (1.0 - hit_percentage) * length < self.pd_threshold:
                logger.info(
                    "Non-cached suffix is smaller than threshold, using decode profile only (hit %s)",
                    hit_percentage,
                )
                return {}

        return {self.prefill_profile: profiles.get(self.prefill_profile)}

    def process_results(
        self, cycle_state, request, profile_results: Mapping[str, ProfileRunResult | None]
    ) -> SchedulingResult:
        decode_result = profile_results.get(self.decode_profile)
        if decode_result is None:
            raise SchedulingError("failed to find available decode workers")

        if profile_results.get(self.prefill_profile) is not None:
            return SchedulingResult(
                profile_results=dict(profile_results),
                primary_profile_name=self.decode_profile,
            )

        return SchedulingResult(
            profile_results={self.decode_profile: decode_result},
            primary_profile_name=self.decode_profile,
        )


def pd_profile_handler_factory(name: str, raw_parameters: Any, handle: Any) -> PdProfileHandler:
    data = _load_parameters(raw_parameters, PD_PROFILE_HANDLER_TYPE)
    t = PD_PROFILE_HANDLER_TYPE
    return PdProfileHandler(
        _field(data, "prefillProfile", str, DEFAULT_PREFILL_PROFILE, t),
        _field(data, "decodeProfile", str, DEFAULT_DECODE_PROFILE, t),
        _field(data, "prefixPluginName", str, DEFAULT_PREFIX_PLUGIN_NAME, t),
        _field(data, "threshold", int, 0, t),
        _field(data, "hashBlockSize", int, DEFAULT_HASH_BLOCK_SIZE, t),
    ).with_name(name)