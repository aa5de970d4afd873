"""Scorer that keeps requests of one session on the same pod."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Iterable
from typing import Any

from llmdsched.types import LLMRequest, Pod, PodMetrics, Response, TypedName

logger = logging.getLogger(__name__)

SESSION_AFFINITY_TYPE = "session-affinity-scorer"
SESSION_TOKEN_HEADER = "x-session-token"


class SessionAffinity:
    """Gives 1.0 to the pod named by the session token and 0.0 to the rest."""

    def __init__(self) -> None:
        self.typed_name = TypedName(type=SESSION_AFFINITY_TYPE)

    def with_name(self, name: str) -> SessionAffinity:
        self.typed_name.name = name
        return self

    def score(self, cycle_state, request: LLMRequest, pods: Iterable[PodMetrics] | None) -> dict[PodMetrics, float]:
        token = request.headers.get(SESSION_TOKEN_HEADER, "")
        pod_name = ""
        if token:
            try:
                pod_name = base64.b64decode(token, validate=True).decode("utf-8", errors="replace")
            except (binascii.Error, ValueError) as exc:
                logger.error("Error decoding session header: %s", exc)
        return {
            pod: 1.0 if str(pod.pod.namespaced_name) == pod_name else 0.0
            for pod in pods or ()
        }

    def response_complete(
        self, request: Any, response: Response | None, target_pod: Pod | None
    ) -> None:
        """Set the session token naming the target pod on the response."""
        if response is None or target_pod is None:
            request_id = response.request_id if response is not None else "undefined"
            logger.debug(
                "Session affinity scorer - skip post response because one of response, "
                "targetPod is nil (req id %s)",
                request_id,
            )
            return
        if response.headers is None:
            response.headers = {}
        response.headers[SESSION_TOKEN_HEADER] = base64.b64encode(
            str(target_pod.namespaced_name).encode("utf-8")
        ).decode("ascii")


def session_affinity_factory(name: str, raw_parameters: Any, handle: Any) -> SessionAffinity:
    return SessionAffinity().with_name(name)