"""Filter plugins selecting pods by label values or label selectors."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from llmdsched.types import PluginConfigError, PodMetrics, TypedName

BY_LABEL_TYPE = "by-label"
BY_LABEL_SELECTOR_TYPE = "by-label-selector"

ROLE_LABEL = "llm-d.ai/role"
ROLE_PREFILL = "prefill"
ROLE_DECODE = "decode"
ROLE_BOTH = "both"

DECODE_ROLE_TYPE = "decode-filter"
PREFILL_ROLE_TYPE = "prefill-filter"


def _load_parameters(raw: Any, plugin_type: str) -> dict[str, Any]:
    prefix = f"failed to parse the parameters of the '{plugin_type}' filter"
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


def _typed(data: Mapping[str, Any], key: str, kind: type, default: Any, plugin_type: str) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise PluginConfigError(
            f"failed to parse the parameters of the '{plugin_type}' filter - "
            f"field '{key}' must be of type {kind.__name__}"
        )
    return value


class ByLabel:
    """Keeps pods whose label holds one of the valid values (or, optionally, lacks the label)."""

    def __init__(self, name: str, label_name: str, allows_no_label: bool, *args: str) -> None:
        self.typed_name = TypedName(type=BY_LABEL_TYPE, name=name)
        self.label_name = label_name
        self.allows_no_label = allows_no_label
        self.valid_values = frozenset(args)

    def with_name(self, name: str) -> ByLabel:
        self.typed_name.name = name
        return self

    def _accepts(self, pod: PodMetrics) -> bool:
        labels = pod.pod.labels or {}
        defined = self.label_name in labels
        value = labels.get(self.label_name, "")
        return (not defined and self.allows_no_label) or value in self.valid_values

    def filter(self, cycle_state, request, pods: Iterable[PodMetrics] | None) -> list[PodMetrics]:
        return [pod for pod in pods or () if self._accepts(pod)]


def by_label_factory(name: str, raw_parameters: Any, handle: Any) -> ByLabel:
    data = _load_parameters(raw_parameters, BY_LABEL_TYPE)
    label = _typed(data, "label", str, "", BY_LABEL_TYPE)
    valid_values = _typed(data, "validValues", list, [], BY_LABEL_TYPE)
    if not all(isinstance(value, str) for value in valid_values):
        raise PluginConfigError(
            f"failed to parse the parameters of the '{BY_LABEL_TYPE}' filter - "
            "field 'validValues' must hold strings"
        )
    allows_no_label = _typed(data, "allowsNoLabel", bool, False, BY_LABEL_TYPE)
    return ByLabel(name, label, allows_no_label, *valid_values)


_NAME_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


def _validate_key(key: str) -> None:
    parts = key.split("/")
    if len(parts) == 2:
        prefix, name = parts
        if not prefix or len(prefix) > 253 or not _SUBDOMAIN_RE.match(prefix):
            raise PluginConfigError(f"invalid label key '{key}': bad prefix")
    elif len(parts) == 1:
        name = parts[0]
    else:
        raise PluginConfigError(f"invalid label key '{key}'")
    if not name or len(name) > 63 or not _NAME_RE.match(name):
        raise PluginConfigError(f"invalid label key '{key}'")


def _validate_value(value: str) -> None:
    if len(value) > 63 or (value and not _NAME_RE.match(value)):
        raise PluginConfigError(f"invalid label value '{value}'")


class _Operator(str, Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass(frozen=True)
class _Requirement:
    key: str
    operator: _Operator
    values: frozenset[str]

    @classmethod
    def build(cls, key: str, operator: str, values: Iterable[str]) -> _Requirement:
        _validate_key(key)
        try:
            op = _Operator(operator)
        except ValueError:
            raise PluginConfigError(
                f"{operator!r} is not a valid label selector operator"
            ) from None
        values = list(values)
        if op in (_Operator.IN, _Operator.NOT_IN) and not values:
            raise PluginConfigError("for 'in', 'notin' operators, values set can't be empty")
        if op in (_Operator.EXISTS, _Operator.DOES_NOT_EXIST) and values:
            raise PluginConfigError("values set must be empty for exists and does not exist")
        for value in values:
            _validate_value(value)
        return cls(key, op, frozenset(values))

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator is _Operator.EXISTS:
            return present
        if self.operator is _Operator.DOES_NOT_EXIST:
            return not present
        if self.operator is _Operator.IN:
            return present and labels[self.key] in self.values
        return not present or labels[self.key] not in self.values


class LabelSelector:
    """A label selector made of exact label matches and set-based expressions."""

    def __init__(
        self,
        match_labels: Mapping[str, str] | None = None,
        match_expressions: Iterable[Mapping[str, Any]] = (),
    ) -> None:
        self.match_labels = dict(match_labels or {})
        self.match_expressions = [dict(expr) for expr in match_expressions]
        self._requirements = [
            _Requirement.build(key, _Operator.IN.value, [value])
            for key, value in self.match_labels.items()
        ]
        self._requirements.extend(
            _Requirement.build(expr["key"], expr["operator"], expr.get("values") or ())
            for expr in self.match_expressions
        )

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return all(requirement.matches(labels) for requirement in self._requirements)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def parse_label_selector(data: Mapping[str, Any] | None) -> LabelSelector:
    """Build a selector from its JSON form (``matchLabels`` / ``matchExpressions``)."""
    if data is None:
        return LabelSelector()
    if not isinstance(data, Mapping):
        raise PluginConfigError("label selector must be an object")
    match_labels = data.get("matchLabels") or {}
    if not isinstance(match_labels, Mapping) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in match_labels.items()
    ):
        raise PluginConfigError("'matchLabels' must map strings to strings")
    expressions = data.get("matchExpressions") or []
    if not isinstance(expressions, list):
        raise PluginConfigError("'matchExpressions' must be a list")
    for expr in expressions:
        if not isinstance(expr, Mapping):
            raise PluginConfigError("each match expression must be an object")
        if not isinstance(expr.get("key", ""), str) or not isinstance(expr.get("operator", ""), str):
            raise PluginConfigError("match expression 'key' and 'operator' must be strings")
        values = expr.get("values")
        if values is not None and not _is_str_list(values):
            raise PluginConfigError("match expression 'values' must be a list of strings")
    normalized = [
        {"key": e.get("key", ""), "operator": e.get("operator", ""), "values": e.get("values") or []}
        for e in expressions
    ]
    return LabelSelector(match_labels, normalized)


class ByLabelSelector:
    """Keeps pods whose labels satisfy a label selector; no selector matches nothing."""

    def __init__(self, name: str, selector: LabelSelector | Mapping[str, Any] | None) -> None:
        if not name:
            raise PluginConfigError("ByLabelSelector: missing filter name")
        if isinstance(selector, Mapping):
            selector = parse_label_selector(selector)
        self.typed_name = TypedName(type=BY_LABEL_SELECTOR_TYPE, name=name)
        self.selector = selector

    def filter(self, cycle_state, request, pods: Iterable[PodMetrics] | None) -> list[PodMetrics]:
        if self.selector is None:
            return []
        return [pod for pod in pods or () if self.selector.matches(pod.pod.labels)]


def by_label_selector_factory(name: str, raw_parameters: Any, handle: Any) -> ByLabelSelector:
    data = _load_parameters(raw_parameters, BY_LABEL_SELECTOR_TYPE)
    return ByLabelSelector(name, parse_label_selector(data))


def new_prefill_role() -> ByLabel:
    return ByLabel(PREFILL_ROLE_TYPE, ROLE_LABEL, False, ROLE_PREFILL)


def new_decode_role() -> ByLabel:
    return ByLabel(DECODE_ROLE_TYPE, ROLE_LABEL, True, ROLE_DECODE, ROLE_BOTH)


def prefill_role_factory(name: str, raw_parameters: Any, handle: Any) -> ByLabel:
    return new_prefill_role().with_name(name)


def decode_role_factory(name: str, raw_parameters: Any, handle: Any) -> ByLabel:
    return new_decode_role().with_name(name)