"""
Transform Adapter - Local data transformations (JSON, text, arrays).

No external calls; every operation is a pure function of its input
(and, for text.template, the run's variables).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from node_sdk.base import BaseAdapter
from node_sdk.conditions import to_number, to_text
from node_sdk.context import ExecutionContext
from node_sdk.credentials import Credentials
from node_sdk.errors import ErrorCode, ExecutionError
from workflow_runtime.interpolation import (
    MISSING,
    VARIABLE_PATTERN,
    parse_variable_reference,
    resolve_path_value,
    resolve_variable,
    value_to_string,
)


def _extract(obj: Any, path: Optional[str]) -> Any:
    if not path:
        return obj
    value = resolve_path_value(obj, path)
    return None if value is MISSING else value


def _matches(item_value: Any, operator: str, value: Any) -> bool:
    if operator == "equals":
        return item_value == value
    if operator == "notEquals":
        return item_value != value
    if operator == "contains":
        return to_text(value).lower() in to_text(item_value).lower()
    if operator == "gt":
        return to_number(item_value) > to_number(value)
    if operator == "lt":
        return to_number(item_value) < to_number(value)
    if operator == "gte":
        return to_number(item_value) >= to_number(value)
    if operator == "lte":
        return to_number(item_value) <= to_number(value)
    if operator == "exists":
        return item_value is not None
    # Unknown operators keep every item
    return True


class TransformAdapter(BaseAdapter):
    """JSON, text template and array operations."""

    provider = "transform"
    supported_operations = (
        "json.parse",
        "json.stringify",
        "text.template",
        "array.filter",
        "array.map",
    )
    operation_aliases = {
        "transform.jsonParse": "json.parse",
        "transform.jsonStringify": "json.stringify",
        "transform.template": "text.template",
        "transform.filter": "array.filter",
        "transform.map": "array.map",
    }
    # Templates are rendered here so custom variables can be used
    preserve_keys = frozenset({"template"})
    requires_credentials = False

    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        if operation == "json.parse":
            return self.json_parse(input)
        if operation == "json.stringify":
            return self.json_stringify(input)
        if operation == "text.template":
            return self.text_template(input, context)
        if operation == "array.filter":
            return self.array_filter(input)
        return self.array_map(input)

    def json_parse(self, input: Dict[str, Any]) -> Dict[str, Any]:
        data = input.get("data")
        if data is None or data == "":
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Data is required for JSON parse")

        if isinstance(data, (str, bytes)):
            try:
                parsed = json.loads(data)
            except ValueError as e:
                raise ExecutionError(ErrorCode.PARSE_ERROR, f"Failed to parse JSON: {e}") from e
        else:
            # Already structured (whole-value interpolation keeps types)
            parsed = data

        parsed = _extract(parsed, input.get("path"))
        return {"data": parsed, "output": parsed}

    def json_stringify(self, input: Dict[str, Any]) -> Dict[str, Any]:
        data = input.get("data")
        if input.get("pretty"):
            result = json.dumps(data, indent=2, default=str)
        else:
            result = json.dumps(data, separators=(",", ":"), default=str)
        return {"data": result, "output": result}

    def text_template(self, input: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        template = input.get("template")
        if not template or not isinstance(template, str):
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Template is required")

        variables = {**(input.get("variables") or {}), "trigger": context.trigger_input}

        def substitute(match: Any) -> str:
            ref = parse_variable_reference(match.group(1))
            if ref.source in variables:
                return value_to_string(_extract(variables[ref.source], ".".join(ref.path)))
            return value_to_string(resolve_variable(ref, context))

        result = VARIABLE_PATTERN.sub(substitute, template)
        return {"data": result, "output": result}

    def array_filter(self, input: Dict[str, Any]) -> Dict[str, Any]:
        array = input.get("array")
        if not isinstance(array, list):
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Array is required")

        field = input.get("field")
        operator = input.get("operator") or "equals"
        value = input.get("value")

        filtered = [item for item in array if _matches(_extract(item, field), operator, value)]
        return {"data": filtered, "count": len(filtered), "output": filtered}

    def array_map(self, input: Dict[str, Any]) -> Dict[str, Any]:
        array = input.get("array")
        if not isinstance(array, list):
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Array is required")

        fields: List[str] = input.get("fields") or []
        rename: Dict[str, str] = input.get("transform") or {}

        if fields:
            mapped = [{f: _extract(item, f) for f in fields} for item in array]
        elif rename:
            mapped = [
                {new_key: _extract(item, old_key) for old_key, new_key in rename.items()}
                for item in array
            ]
        else:
            mapped = list(array)

        return {"data": mapped, "count": len(mapped), "output": mapped}


__all__ = ["TransformAdapter"]
