# llmdsched

Scheduling plugins for an endpoint picker that routes LLM inference requests
across a pool of model-server pods. It has no dependencies beyond the
standard library.

The package provides:

- **Filters** (`llmdsched.filters`) that keep or drop candidate pods by their
  labels: `ByLabel`, `ByLabelSelector` (Kubernetes-style `matchLabels` and
  `matchExpressions` with the `In`, `NotIn`, `Exists` and `DoesNotExist`
  operators, parsed by `parse_label_selector`), and the prefill/decode role
  filters built by `new_prefill_role()` and `new_decode_role()`.
- **Scorers** that rate each candidate pod between 0 and 1:
  - `LoadAware` (`llmdsched.load_aware`) gives 0.5 to a pod with an empty
    waiting queue, falling linearly to 0 at the queue threshold (default 128).
  - `ActiveRequest` (`llmdsched.active_request`) scores by the number of
    in-flight requests per pod: idle pods get 1.0, the busiest pod 0.0.
    Requests expire after a timeout (default two minutes, or a duration
    string such as `"30s"`, `"1m"`, `"1h30m"` read by `parse_duration`).
  - `SessionAffinity` (`llmdsched.session_affinity`) gives 1.0 to the pod
    named in the base64 `x-session-token` request header and 0.0 to the rest;
    its `response_complete` sets that header on the response.
  - `NoHitLRU` (`llmdsched.no_hit_lru`) spreads requests that miss the prefix
    cache over the pods that least recently received such a request; on a
    cache hit every pod gets a neutral 0.5.
- **Profile handlers** (`llmdsched.profiles`) that decide which scheduling
  profiles run and how their results combine: `PdProfileHandler` for
  disaggregated prefill/decode serving, and `DataParallelProfileHandler` for
  data-parallel model servers.
- **Pre-request hooks**: `PrefillHeaderHandler` (`llmdsched.prerequest`)
  writes the selected prefill pod into the `x-prefiller-host-port` request
  header.
- **Helpers**: `indexed_scores_to_normalized_scored_pods` and `get_min_max`
  in `llmdsched.scoring` normalize key-indexed integer scores to 0-1.

## Building plugins from configuration

Every plugin has a factory that takes a name, raw parameters (a JSON string,
bytes, a mapping, or `None`) and a handle. The registry in
`llmdsched.registry` maps plugin type names to those factories:

```python
from llmdsched.registry import create_plugin, register_all_plugins, registered_types

register_all_plugins()
print(registered_types())

gpu_filter = create_plugin(
    "by-label",
    "gpu-pods",
    '{"label": "accelerator", "validValues": ["a100", "h100"]}',
    None,
)
```

`register(plugin_type, factory)` adds or replaces a factory. Asking for a
type that was never registered raises `UnknownPluginTypeError`; parameters
that cannot be parsed raise `PluginConfigError`.

| Type                             | Plugin                       | Parameters                                                                 |
|----------------------------------|------------------------------|----------------------------------------------------------------------------|
| `by-label`                       | `ByLabel`                    | `label`, `validValues`, `allowsNoLabel`                                    |
| `by-label-selector`              | `ByLabelSelector`            | `matchLabels`, `matchExpressions`                                          |
| `decode-filter`                  | decode role filter           | none                                                                       |
| `prefill-filter`                 | prefill role filter          | none                                                                       |
| `prefill-header-handler`         | `PrefillHeaderHandler`       | `prefillProfile` (default `prefill`)                                       |
| `data-parallel-profile-handler`  | `DataParallelProfileHandler` | `primaryPort` (default 8000)                                               |
| `pd-profile-handler`             | `PdProfileHandler`           | `threshold`, `decodeProfile`, `prefillProfile`, `prefixPluginName`, `hashBlockSize` (default 64) |
| `load-aware-scorer`              | `LoadAware`                  | `threshold` (default 128)                                                  |
| `session-affinity-scorer`        | `SessionAffinity`            | none                                                                       |
| `active-request-scorer`          | `ActiveRequest`              | `requestTimeout`                                                           |
| `no-hit-lru-scorer`              | `NoHitLRU`                   | `prefixPluginName`, `lruSize` (default 1024)                               |

## Using plugins directly

```python
from llmdsched.filters import new_decode_role
from llmdsched.load_aware import LoadAware
from llmdsched.types import Metrics, NamespacedName, Pod, PodMetrics

pods = [
    PodMetrics(pod=Pod(NamespacedName("default", "a"), "10.0.0.1", "8000",
                       {"llm-d.ai/role": "decode"}),
               metrics=Metrics(waiting_queue_size=2)),
    PodMetrics(pod=Pod(NamespacedName("default", "b"), "10.0.0.2", "8000",
                       {"llm-d.ai/role": "prefill"})),
]

decode_filter = new_decode_role()
scorer = LoadAware(10).with_name("queue")

candidates = decode_filter.filter(None, None, pods)
scores = scorer.score(None, None, candidates)
```

Filters return the list of pods that pass; scorers return a dictionary from
pod to score. `PodMetrics` is hashed by identity, so the same objects must be
used to look up scores. Pods, requests and scheduling results are the
dataclasses in `llmdsched.types` (`Pod`, `Metrics`, `PodMetrics`,
`LLMRequest`, `ProfileRunResult`, `SchedulingResult`, `Response`, and so on);
`CycleState` and `PluginState` hold per-cycle and per-request state.

`ActiveRequest` starts a background thread that drops expired requests; call
`close()` or use it as a context manager to stop it. `delete_expired()`,
`has_request(key)` and `pod_count(pod_name)` give direct access to its
bookkeeping.

## Prefill/decode roles

Pods carry their role in the `llm-d.ai/role` label. The prefill filter keeps
only pods labelled `prefill`; the decode filter keeps pods labelled `decode`
or `both`, and also pods with no role label at all.

`PdProfileHandler.pick` always runs the decode profile first. Once decode
has succeeded and other profiles remain, it runs the prefill profile, unless
a positive threshold is set and the part of the prompt not already in the
decode pod's prefix cache is shorter than that many bytes. The prompt is the
completions prompt, or the chat messages serialized as compact JSON.
`process_results` fails with `SchedulingError` when decode failed, and drops a
failed prefill result.

`DataParallelProfileHandler` expects exactly one profile; it writes the first
target into the `x-data-parallel-host-port` request header and rewrites every
target's port to the primary port.

## Prefix-cache state

`PdProfileHandler` and `NoHitLRU` read a `PrefixCacheState` (matched block
counts per `NamespacedName`) from the `CycleState`. `PdProfileHandler` reads it
under `"<prefixPluginName>/prefix-cache-scorer"`; `NoHitLRU` reads it under
the plain prefix plugin name (default `prefix-cache-scorer`). A missing state
counts as no cache hit.

## What this package does not do

It contains plugins only. There is no scheduler that runs profiles, filters,
scorers and pickers together, no prefix-cache scorer that produces the
`PrefixCacheState`, no KV-cache-index scorer, no proxy or server, and no
command-line program. The caller drives the plugins and supplies the pods and
any prefix-cache state.