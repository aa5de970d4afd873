"""Pre-request plugin that passes the chosen prefill worker to the sidecar."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from llmdsched.types import (
    PREFILL_POD_HEADER,
    LLMRequest,
    PluginConfigError,
    SchedulingResult,
    TypedName,
)

PREFILL_HEADER_HANDLER_TYPE = "prefill-header-handler"
DEFAULT_PREFILL_PROFILE = "prefill"


class PrefillHeaderHandler:
    """Writes the prefill profile's target pod into the prefill header."""

    def __init__(self, prefill_profile: str = DEFAULT_PREFILL_PROFILE) -> None:
        self.typed_name = TypedName(type=PREFILL_HEADER_HANDLER_TYPE)
        self.prefill_profile = prefill_profile

    def with_name(self, name: str) -> PrefillHeaderHandler:
        self.typed_name.name = name
        return self

    def pre_request(self, request: LLMRequest, scheduling_result: SchedulingResult) -> None:
        if PREFILL_POD_HEADER in request.headers:
            request.headers[PREFILL_POD_HEADER] = ""
        result = scheduling_result.profile_results.get(self.prefill_profile)
        if result is None or not result.target_pods:
            return
        request.headers[PREFILL_POD_HEADER] = result.target_pods[0].pod.host_port


def prefill_header_handler_factory(name: str, raw_parameters: Any, handle: Any) -> PrefillHeaderHandler:
    prefix = f"failed to parse the parameters of the '{PREFILL_HEADER_HANDLER_TYPE}' pre-request plugin"
    params: Any = {}
    if isinstance(raw_parameters, Mapping):
        params = dict(raw_parameters)
    elif raw_parameters is not None:
        try:
            params = json.loads(raw_parameters)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as exc:
            raise PluginConfigError(f"{prefix} - {exc}") from exc
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise PluginConfigError(f"{prefix} - expected a JSON object")
    profile = params.get("prefillProfile")
    if profile is None:
        profile = DEFAULT_PREFILL_PROFILE
    elif not isinstance(profile, str):
        raise PluginConfigError(f"{prefix} - field 'prefillProfile' must be a string")
    return PrefillHeaderHandler(profile).with_name(name)