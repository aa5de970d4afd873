import time

import pytest

from llmdsched.active_request import (
    ACTIVE_REQUEST_TYPE,
    DEFAULT_REQUEST_TIMEOUT,
    ActiveRequest,
    ActiveRequestParameters,
    active_request_factory,
    parse_duration,
)
from llmdsched.types import (
    LLMRequest,
    Metrics,
    NamespacedName,
    Pod,
    PodMetrics,
    PluginConfigError,
    ProfileRunResult,
    Response,
    SchedulingResult,
)


def make_pod(name, waiting=0):
    return PodMetrics(
        pod=Pod(namespaced_name=NamespacedName(namespace="default", name=name)),
        metrics=Metrics(waiting_queue_size=waiting),
    )


def result_for(pod):
    return SchedulingResult(profile_results={"test-profile": ProfileRunResult(target_pods=[pod])})


@pytest.fixture
def scorer():
    s = ActiveRequest(None)
    yield s
    s.close()


@pytest.fixture
def pods():
    return make_pod("pod-a", 2), make_pod("pod-b", 0), make_pod("pod-c", 15)


def load(scorer, pod, count, tag):
    for i in range(count):
        scorer.pre_request(LLMRequest(request_id=f"{tag}-{i}"), result_for(pod))


def test_score_no_pods_in_cache(scorer, pods):
    a, b, c = pods
    assert scorer.score(None, None, [a, b, c]) == {a: 1.0, b: 1.0, c: 1.0}


def test_score_different_request_counts(scorer, pods):
    a, b, c = pods
    load(scorer, a, 3, "a")
    load(scorer, c, 6, "c")
    assert scorer.score(None, None, [a, b, c]) == {a: 0.5, b: 1.0, c: 0.0}


def test_score_some_pods_in_cache(scorer, pods):
    a, b, c = pods
    load(scorer, a, 4, "a")
    load(scorer, c, 1, "c")
    assert scorer.score(None, None, [a, b, c]) == {a: 0.0, b: 1.0, c: 0.75}


def test_pre_request_tracks_requests(scorer, pods):
    a = pods[0]
    scorer.pre_request(LLMRequest(request_id="test-request-1"), result_for(a))
    assert scorer.has_request("default/pod-a.test-request-1")
    assert scorer.pod_count("default/pod-a") == 1

    scorer.pre_request(LLMRequest(request_id="test-request-2"), result_for(a))
    assert scorer.pod_count("default/pod-a") == 2
    assert scorer.has_request("default/pod-a.test-request-2")


def test_pre_request_skips_empty_results(scorer):
    result = SchedulingResult(profile_results={"x": None, "y": ProfileRunResult(target_pods=[])})
    scorer.pre_request(LLMRequest(request_id="r"), result)
    assert scorer.pod_count("default/pod-a") == 0


def test_response_complete_removes_request(scorer, pods):
    a = pods[0]
    request = LLMRequest(request_id="test-request-1")
    scorer.pre_request(request, result_for(a))
    assert scorer.has_request("default/pod-a.test-request-1")
    assert scorer.pod_count("default/pod-a") == 1

    scorer.response_complete(request, Response(), a.pod)
    assert not scorer.has_request("default/pod-a.test-request-1")
    assert scorer.pod_count("default/pod-a") == 0


def test_response_complete_without_target_keeps_count(scorer, pods):
    a = pods[0]
    request = LLMRequest(request_id="test-request-1")
    scorer.pre_request(request, result_for(a))
    scorer.response_complete(request, Response(), None)
    assert scorer.pod_count("default/pod-a") == 1


def test_response_complete_unknown_request_keeps_count(scorer, pods):
    a = pods[0]
    scorer.pre_request(LLMRequest(request_id="known"), result_for(a))
    scorer.response_complete(LLMRequest(request_id="unknown"), Response(), a.pod)
    assert scorer.pod_count("default/pod-a") == 1


def test_ttl_expiration():
    scorer = ActiveRequest(ActiveRequestParameters(request_timeout="100ms"))
    try:
        a = make_pod("pod-a")
        scorer.pre_request(LLMRequest(request_id="test-request-ttl"), result_for(a))
        assert scorer.pod_count("default/pod-a") == 1
        time.sleep(0.3)
        scorer.delete_expired()
        assert scorer.pod_count("default/pod-a") == 0
        assert not scorer.has_request("default/pod-a.test-request-ttl")
    finally:
        scorer.close()


def test_invalid_timeout_uses_default():
    with ActiveRequest(ActiveRequestParameters(request_timeout="invalid")) as scorer:
        assert scorer.request_timeout == DEFAULT_REQUEST_TIMEOUT


def test_negative_timeout_uses_default():
    with ActiveRequest(ActiveRequestParameters(request_timeout="-5s")) as scorer:
        assert scorer.request_timeout == DEFAULT_REQUEST_TIMEOUT


def test_typed_name(scorer):
    assert scorer.typed_name.type == ACTIVE_REQUEST_TYPE == "active-request-scorer"


def test_with_name(scorer):
    assert scorer.with_name("test-scorer").typed_name.name == "test-scorer"


@pytest.mark.parametrize(
    "text, seconds",
    [("30s", 30.0), ("1m", 60.0), ("2h", 7200.0), ("0", 0.0), ("1h30m", 5400.0), ("500ms", 0.5)],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == pytest.approx(seconds)


@pytest.mark.parametrize("text", ["invalid", "", "10", "5x", "."])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_factory_reads_timeout():
    scorer = active_request_factory("ar", '{"requestTimeout": "5s"}', None)
    try:
        assert scorer.request_timeout == 5.0
        assert scorer.typed_name.name == "ar"
    finally:
        scorer.close()


def test_factory_rejects_bad_json():
    with pytest.raises(PluginConfigError):
        active_request_factory("ar", '{"requestTimeout": ', None)