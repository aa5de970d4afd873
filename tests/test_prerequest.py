import pytest

from llmdsched.prerequest import (
    DEFAULT_PREFILL_PROFILE,
    PREFILL_HEADER_HANDLER_TYPE,
    PrefillHeaderHandler,
    prefill_header_handler_factory,
)
from llmdsched.types import (
    PREFILL_POD_HEADER,
    LLMRequest,
    NamespacedName,
    PluginConfigError,
    Pod,
    PodMetrics,
    ProfileRunResult,
    SchedulingResult,
)


def make_pod(address, port):
    return PodMetrics(pod=Pod(namespaced_name=NamespacedName("ns", "p"), address=address, port=port))


def result_for(profile, pod):
    return SchedulingResult(profile_results={profile: ProfileRunResult([pod])}, primary_profile_name="decode")


def test_sets_header_from_prefill_profile():
    request = LLMRequest(request_id="r1")
    pod = make_pod("10.0.0.1", "8000")
    PrefillHeaderHandler().pre_request(request, result_for(DEFAULT_PREFILL_PROFILE, pod))
    assert request.headers[PREFILL_POD_HEADER] == "10.0.0.1:8000"
    assert request.headers[PREFILL_POD_HEADER] == pod.pod.host_port


def test_clears_existing_header_when_no_prefill_result():
    request = LLMRequest(headers={PREFILL_POD_HEADER: "1.1.1.1:1"})
    PrefillHeaderHandler().pre_request(request, result_for("decode", make_pod("2.2.2.2", "2")))
    assert request.headers[PREFILL_POD_HEADER] == ""


def test_header_not_added_without_prefill_result():
    request = LLMRequest()
    PrefillHeaderHandler().pre_request(request, SchedulingResult())
    assert PREFILL_POD_HEADER not in request.headers


def test_failed_prefill_run_is_a_no_op():
    request = LLMRequest()
    result = SchedulingResult(profile_results={DEFAULT_PREFILL_PROFILE: None})
    PrefillHeaderHandler().pre_request(request, result)
    assert PREFILL_POD_HEADER not in request.headers


def test_ipv6_address_is_bracketed():
    request = LLMRequest()
    pod = make_pod("fd00::1", "8000")
    PrefillHeaderHandler().pre_request(request, result_for(DEFAULT_PREFILL_PROFILE, pod))
    assert request.headers[PREFILL_POD_HEADER].startswith("[fd00::1]")


def test_factory_defaults():
    handler = prefill_header_handler_factory("pre", None, None)
    assert handler.typed_name.name == "pre"
    assert handler.typed_name.type == PREFILL_HEADER_HANDLER_TYPE
    assert handler.prefill_profile == DEFAULT_PREFILL_PROFILE


def test_factory_custom_profile_is_used():
    handler = prefill_header_handler_factory("pre", '{"prefillProfile": "my-prefill"}', None)
    request = LLMRequest()
    pod = make_pod("10.1.1.1", "9000")
    handler.pre_request(request, result_for("my-prefill", pod))
    assert handler.prefill_profile == "my-prefill"
    assert request.headers[PREFILL_POD_HEADER] == pod.pod.host_port


@pytest.mark.parametrize("params", ['{"prefillProfile": ', '{"prefillProfile": 3}', '"text"'])
def test_factory_invalid_parameters(params):
    with pytest.raises(PluginConfigError):
        prefill_header_handler_factory("pre", params, None)