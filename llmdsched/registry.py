"""Registry of plugin factories keyed by plugin type."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from llmdsched.active_request import ACTIVE_REQUEST_TYPE, active_request_factory
from llmdsched.filters import (
    BY_LABEL_SELECTOR_TYPE,
    BY_LABEL_TYPE,
    DECODE_ROLE_TYPE,
    PREFILL_ROLE_TYPE,
    by_label_factory,
    by_label_selector_factory,
    decode_role_factory,
    prefill_role_factory,
)
from llmdsched.load_aware import LOAD_AWARE_TYPE, load_aware_factory
from llmdsched.no_hit_lru import NO_HIT_LRU_TYPE, no_hit_lru_factory
from llmdsched.prerequest import PREFILL_HEADER_HANDLER_TYPE, prefill_header_handler_factory
from llmdsched.profiles import (
    DATA_PARALLEL_PROFILE_HANDLER_TYPE,
    PD_PROFILE_HANDLER_TYPE,
    data_parallel_profile_handler_factory,
    pd_profile_handler_factory,
)
from llmdsched.session_affinity import SESSION_AFFINITY_TYPE, session_affinity_factory

Factory = Callable[[str, Any, Any], Any]

_factories: dict[str, Factory] = {}
_lock = threading.Lock()


class UnknownPluginTypeError(LookupError):
    """Raised when no factory is registered for a plugin type."""


def register(plugin_type: str, factory: Factory) -> None:
    """Register (or replace) the factory for a plugin type."""
    with _lock:
        _factories[plugin_type] = factory


def register_all_plugins() -> None:
    """Register the factories of every plugin in this package."""
    for plugin_type, factory in (
        (BY_LABEL_TYPE, by_label_factory),
        (BY_LABEL_SELECTOR_TYPE, by_label_selector_factory),
        (DECODE_ROLE_TYPE, decode_role_factory),
        (PREFILL_ROLE_TYPE, prefill_role_factory),
        (PREFILL_HEADER_HANDLER_TYPE, prefill_header_handler_factory),
        (DATA_PARALLEL_PROFILE_HANDLER_TYPE, data_parallel_profile_handler_factory),
        (PD_PROFILE_HANDLER_TYPE, pd_profile_handler_factory),
        (LOAD_AWARE_TYPE, load_aware_factory),
        (SESSION_AFFINITY_TYPE, session_affinity_factory),
        (ACTIVE_REQUEST_TYPE, active_request_factory),
        (NO_HIT_LRU_TYPE, no_hit_lru_factory),
    ):
        register(plugin_type, factory)


def registered_types() -> list[str]:
    """Sorted list of the plugin types that have a factory."""
    with _lock:
        return sorted(_factories)


def create_plugin(plugin_type: str, name: str, raw_parameters: Any = None, handle: Any = None) -> Any:
    """Build a plugin instance through the factory registered for its type."""
    with _lock:
        factory = _factories.get(plugin_type)
    if factory is None:
        raise UnknownPluginTypeError(f"no plugin factory registered for type '{plugin_type}'")
    return factory(name, raw_parameters, handle)