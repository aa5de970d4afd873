import pytest

from llmdsched.types import (
    CycleState,
    Metrics,
    NamespacedName,
    PluginState,
    Pod,
    PodMetrics,
    StateNotFoundError,
    TypedName,
)


def test_namespaced_name_str():
    assert str(NamespacedName(namespace="default", name="pod-a")) == "default/pod-a"


def test_namespaced_name_is_hashable_and_equal_by_value():
    first = NamespacedName(namespace="ns", name="a")
    second = NamespacedName(namespace="ns", name="a")
    assert {first: 1}[second] == 1


def test_typed_name_str():
    assert str(TypedName(type="by-label", name="mine")) == "mine/by-label"


def test_pod_clone_is_independent():
    pod = Pod(NamespacedName("ns", "p"), "10.0.0.1", "8000", {"app": "x"})
    copy = pod.clone()
    copy.labels["app"] = "y"
    copy.port = "9000"
    assert pod.labels == {"app": "x"}
    assert pod.port == "8000"
    assert copy.namespaced_name == pod.namespaced_name


def test_pod_clone_with_no_labels():
    pod = Pod(labels=None)
    assert pod.clone().labels == {}


def test_metrics_clone_is_independent():
    metrics = Metrics(waiting_queue_size=3)
    copy = metrics.clone()
    copy.waiting_queue_size = 7
    assert metrics.waiting_queue_size == 3
    assert copy.waiting_queue_size == 7


def test_host_port_ipv4():
    pod = Pod(address="1.2.3.4", port="8000")
    assert pod.host_port == "1.2.3.4:8000"


def test_host_port_ipv6_is_bracketed():
    pod = Pod(address="::1", port="8000")
    assert pod.host_port == "[::1]:8000"


def test_pod_metrics_hash_by_identity():
    first = PodMetrics(Pod(address="a"))
    second = PodMetrics(Pod(address="a"))
    scores = {first: 1.0, second: 2.0}
    assert len(scores) == 2


def test_cycle_state_round_trip():
    state = CycleState()
    state.write("key", 42)
    assert state.read("key") == 42


def test_cycle_state_missing_key():
    with pytest.raises(StateNotFoundError):
        CycleState().read("absent")


def test_plugin_state_round_trip_and_delete():
    state = PluginState()
    state.write("req-1", "k", "v")
    assert state.read("req-1", "k") == "v"
    state.delete("req-1")
    with pytest.raises(StateNotFoundError):
        state.read("req-1", "k")


def test_plugin_state_missing_key_for_known_request():
    state = PluginState()
    state.write("req-1", "k", "v")
    with pytest.raises(StateNotFoundError):
        state.read("req-1", "other")


def test_plugin_state_delete_unknown_request_is_harmless():
    state = PluginState()
    state.write("req-1", "k", 1)
    state.delete("req-2")
    assert state.read("req-1", "k") == 1