import pytest

from llmdsched.filters import ByLabel, ByLabelSelector
from llmdsched.load_aware import LoadAware
from llmdsched.no_hit_lru import NoHitLRU
from llmdsched.registry import (
    UnknownPluginTypeError,
    create_plugin,
    register,
    register_all_plugins,
    registered_types,
)
from llmdsched.types import NamespacedName, Pod, PodMetrics, PluginConfigError


def test_register_all_plugins_registers_every_type():
    register_all_plugins()
    types = registered_types()
    for plugin_type in (
        "by-label",
        "by-label-selector",
        "decode-filter",
        "prefill-filter",
        "prefill-header-handler",
        "data-parallel-profile-handler",
        "pd-profile-handler",
        "load-aware-scorer",
        "session-affinity-scorer",
        "active-request-scorer",
        "no-hit-lru-scorer",
    ):
        assert plugin_type in types
    assert types == sorted(types)


def test_create_by_label_plugin_filters_pods():
    register_all_plugins()
    plugin = create_plugin("by-label", "my-filter", '{"label": "role", "validValues": ["x"]}', None)
    assert isinstance(plugin, ByLabel)
    assert plugin.typed_name.name == "my-filter"
    keep = PodMetrics(pod=Pod(namespaced_name=NamespacedName(name="keep"), labels={"role": "x"}))
    drop = PodMetrics(pod=Pod(namespaced_name=NamespacedName(name="drop"), labels={"role": "y"}))
    assert plugin.filter(None, None, [keep, drop]) == [keep]


def test_create_selector_and_scorers():
    register_all_plugins()
    selector = create_plugin("by-label-selector", "sel", '{"matchLabels": {"app": "nginx"}}')
    assert isinstance(selector, ByLabelSelector)
    load = create_plugin("load-aware-scorer", "load", '{"threshold": 10}')
    assert isinstance(load, LoadAware)
    assert load.queue_threshold == 10.0
    lru = create_plugin("no-hit-lru-scorer", "lru")
    assert isinstance(lru, NoHitLRU)
    assert lru.typed_name.name == "lru"


def test_create_active_request_plugin():
    register_all_plugins()
    plugin = create_plugin("active-request-scorer", "active", '{"requestTimeout": "30s"}')
    try:
        assert plugin.request_timeout == 30.0
        assert plugin.typed_name.name == "active"
    finally:
        plugin.close()


def test_unknown_type_raises():
    with pytest.raises(UnknownPluginTypeError):
        create_plugin("no-such-plugin-type", "x")


def test_factory_errors_propagate():
    register_all_plugins()
    with pytest.raises(PluginConfigError):
        create_plugin("by-label-selector", "bad", '{"matchLabels": {"app": "nginx"')


def test_register_custom_factory_and_replace():
    calls = []

    def first(name, raw, handle):
        calls.append(("first", name, raw, handle))
        return name

    def second(name, raw, handle):
        calls.append(("second", name, raw, handle))
        return name.upper()

    register("custom-test-type", first)
    assert "custom-test-type" in registered_types()
    assert create_plugin("custom-test-type", "abc", "{}", "handle") == "abc"
    register("custom-test-type", second)
    assert create_plugin("custom-test-type", "abc") == "ABC"
    assert calls == [("first", "abc", "{}", "handle"), ("second", "abc", None, None)]