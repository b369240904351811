"""
Variable Interpolation - Resolve ``{{source.path}}`` references in node config.

Sources:
- trigger.<path>            trigger payload of the run
- previous.<path>           output of the most recently executed node
- nodes.<nodeId>.<path>     output of a named node
- env.<VAR>                 process environment variable
- flow.<path>               current iteration (item, index, totalItems)

Path segments support plain keys, ``field[N]`` / ``[N]`` indexing and
``field[]`` expansion, which maps the rest of the path over every
element of the array.

A string that is exactly one reference is replaced by the raw value
(type preserved); any other string gets each reference stringified in
place.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from node_sdk.conditions import to_text
from node_sdk.context import ExecutionContext


VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_WHOLE_VALUE_PATTERN = re.compile(r"^\{\{([^}]+)\}\}$")
_EXPAND_SEGMENT = re.compile(r"^(.*)\[\]$")
_INDEX_SEGMENT = re.compile(r"^(.*)\[(\d+)\]$")


class _Missing:
    """Marker for a reference that resolves to nothing."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


@dataclass(frozen=True)
class VariableReference:
    """Parsed ``{{...}}`` reference."""
    raw: str
    source: str
    path: List[str] = field(default_factory=list)
    node_id: Optional[str] = None


@dataclass
class ValidationReport:
    valid: bool
    missing: List[str] = field(default_factory=list)


def parse_variable_reference(expression: str) -> VariableReference:
    """Split ``source.a.b`` (or ``nodes.<id>.a.b``) into its parts."""
    raw = expression.strip()
    parts = raw.split(".")
    source = parts[0]
    if source == "nodes" and len(parts) > 1:
        return VariableReference(raw=raw, source=source, node_id=parts[1], path=parts[2:])
    return VariableReference(raw=raw, source=source, path=parts[1:])


def resolve_path_value(obj: Any, path: Iterable[str] | str) -> Any:
    """
    Walk ``path`` (segment list or dotted string) into ``obj``.

    Returns MISSING when any segment cannot be followed.
    """
    if isinstance(path, str):
        segments = path.split(".") if path else []
    else:
        segments = list(path)
    current = obj

    for i, segment in enumerate(segments):
        if current is None or current is MISSING:
            return MISSING

        expand = _EXPAND_SEGMENT.match(segment)
        if expand:
            base = _lookup(current, expand.group(1)) if expand.group(1) else current
            if not isinstance(base, list):
                return MISSING
            rest = segments[i + 1:]
            if not rest:
                return base
            values = (resolve_path_value(element, rest) for element in base)
            return [v for v in values if v is not MISSING]

        indexed = _INDEX_SEGMENT.match(segment)
        if indexed:
            base = _lookup(current, indexed.group(1)) if indexed.group(1) else current
            index = int(indexed.group(2))
            if not isinstance(base, list) or index >= len(base):
                return MISSING
            current = base[index]
            continue

        current = _lookup(current, segment)

    return current


def _lookup(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, MISSING)
    if isinstance(obj, list) and key.isdigit():
        index = int(key)
        return obj[index] if index < len(obj) else MISSING
    return MISSING


def _resolve_output_path(output: Any, path: List[str]) -> Any:
    # A leading "output" is an alias for the output map unless the map
    # has a real "output" field.
    if path and path[0] == "output":
        if not (isinstance(output, dict) and "output" in output):
            path = path[1:]
    if not path:
        return output
    return resolve_path_value(output, path)


def _resolve(ref: VariableReference, context: ExecutionContext) -> Any:
    if ref.source == "trigger":
        return resolve_path_value(context.trigger_input, ref.path)

    if ref.source == "previous":
        result = context.previous_result
        if result is None or not result.success:
            return MISSING
        return _resolve_output_path(result.output, ref.path)

    if ref.source == "nodes":
        if not ref.node_id:
            return MISSING
        result = context.node_outputs.get(ref.node_id)
        if result is None or not result.success:
            return MISSING
        return _resolve_output_path(result.output, ref.path)

    if ref.source == "flow":
        flow = context.variables.get("flow")
        if flow is None:
            return MISSING
        return resolve_path_value(flow, ref.path)

    if ref.source == "env":
        if not ref.path:
            return MISSING
        value = os.environ.get(ref.path[0])
        return MISSING if value is None else value

    return MISSING


def resolve_variable(reference: VariableReference | str, context: ExecutionContext) -> Any:
    """Resolve one reference; None when it resolves to nothing."""
    if isinstance(reference, str):
        reference = parse_variable_reference(reference)
    value = _resolve(reference, context)
    return None if value is MISSING else value


def value_to_string(value: Any) -> str:
    """Stringify a resolved value for template substitution."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, list):
        parts = (value_to_string(v) for v in value)
        return ", ".join(p for p in parts if p)
    return to_text(value)


def extract_variables(text: str) -> List[str]:
    """All reference expressions in a string, in order."""
    if not isinstance(text, str):
        return []
    return [m.strip() for m in VARIABLE_PATTERN.findall(text)]


def has_variables(value: Any) -> bool:
    """True if any string inside ``value`` contains a reference."""
    if isinstance(value, str):
        return VARIABLE_PATTERN.search(value) is not None
    if isinstance(value, list):
        return any(has_variables(v) for v in value)
    if isinstance(value, dict):
        return any(has_variables(v) for v in value.values())
    return False


def interpolate_string(text: str, context: ExecutionContext) -> Any:
    """
    Interpolate one string.

    Returns the raw resolved value when the whole (trimmed) string is a
    single reference, otherwise a string with every reference replaced.
    """
    whole = _WHOLE_VALUE_PATTERN.match(text.strip())
    if whole:
        return resolve_variable(whole.group(1), context)

    return VARIABLE_PATTERN.sub(
        lambda m: value_to_string(_resolve(parse_variable_reference(m.group(1)), context)),
        text,
    )


def interpolate_value(
    value: Any,
    context: ExecutionContext,
    preserve_keys: Iterable[str] = (),
) -> Any:
    """Recursively interpolate strings inside lists and dicts."""
    preserve = frozenset(preserve_keys)

    if isinstance(value, str):
        return interpolate_string(value, context)
    if isinstance(value, list):
        return [interpolate_value(v, context, preserve) for v in value]
    if isinstance(value, dict):
        return {
            k: v if k in preserve and isinstance(v, str) else interpolate_value(v, context, preserve)
            for k, v in value.items()
        }
    return value


def interpolate_config(
    config: Dict[str, Any],
    context: ExecutionContext,
    preserve_keys: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Interpolate a node's whole config map.

    Args:
        config: Node data as authored
        context: Live execution context
        preserve_keys: Keys whose string values are passed through untouched

    Returns:
        New config map; the input is not modified
    """
    return interpolate_value(config or {}, context, preserve_keys)


def validate_variables(config: Any, context: ExecutionContext, path: str = "") -> ValidationReport:
    """
    Report every reference in ``config`` that resolves to nothing.

    Entries read ``"<config path>: <reference>"``.
    """
    missing: List[str] = []
    _collect_missing(config, context, path, missing)
    return ValidationReport(valid=not missing, missing=missing)


def _collect_missing(value: Any, context: ExecutionContext, path: str, missing: List[str]) -> None:
    if isinstance(value, str):
        for expression in extract_variables(value):
            if _resolve(parse_variable_reference(expression), context) is MISSING:
                missing.append(f"{path}: {expression}")
    elif isinstance(value, list):
        for i, item in enumerate(value):
            _collect_missing(item, context, f"{path}[{i}]", missing)
    elif isinstance(value, dict):
        for key, item in value.items():
            _collect_missing(item, context, f"{path}.{key}" if path else key, missing)


__all__ = [
    "MISSING",
    "VARIABLE_PATTERN",
    "ValidationReport",
    "VariableReference",
    "extract_variables",
    "has_variables",
    "interpolate_config",
    "interpolate_string",
    "interpolate_value",
    "parse_variable_reference",
    "resolve_path_value",
    "resolve_variable",
    "validate_variables",
    "value_to_string",
]
