"""
Flow Adapter - Control-flow operators.

These nodes shape execution rather than calling external APIs:
- Iterator (flow.iterate): one array becomes N per-item passes (1 -> N)
- End-Iterator (flow.endIterate): right boundary of a loop body
- Aggregator (flow.aggregate): N values become one (N -> 1)
- Router (flow.route): selects the branch(es) whose conditions match
- Filter (flow.filter): lets the data through or stops the run

Decisions are returned as NodeSignals on a FlowOutcome; the resolver
performs the actual iteration, stopping and pruning.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from node_sdk.base import BaseAdapter
from node_sdk.conditions import evaluate_condition, to_number, to_text
from node_sdk.context import ExecutionContext, FlowOutcome, IterationPlan, NodeSignal
from node_sdk.credentials import Credentials
from node_sdk.errors import ErrorCode, ExecutionError
from node_sdk.expressions import SafeExpressionEvaluator
from workflow_runtime.interpolation import MISSING, resolve_path_value, resolve_variable


logger = logging.getLogger(__name__)

AGGREGATION_MODES = ("array", "first", "last", "concat", "sum", "count", "custom")


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _extract(obj: Any, path: Optional[str]) -> Any:
    if not path:
        return obj
    value = resolve_path_value(obj, path)
    return None if value is MISSING else value


def _as_output_map(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {"output": value, "data": value}


class FlowAdapter(BaseAdapter):
    """Iterator, aggregator, router and filter operators."""

    provider = "flow"
    supported_operations = (
        "flow.iterate",
        "flow.endIterate",
        "flow.aggregate",
        "flow.route",
        "flow.filter",
    )
    # Field references are resolved against the previous output here
    preserve_keys = frozenset({"filterField", "field"})
    requires_credentials = False

    def __init__(self, *args: Any, evaluator: Optional[SafeExpressionEvaluator] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.evaluator = evaluator or SafeExpressionEvaluator()

    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> FlowOutcome:
        if operation == "flow.iterate":
            return self.iterate(input, context)
        if operation == "flow.endIterate":
            return self.end_iterate(input, context)
        if operation == "flow.aggregate":
            return self.aggregate(input, context)
        if operation == "flow.route":
            return self.route(input, context)
        return self.filter(input, context)

    # ------------------------------------------------------------------
    # Iterator
    # ------------------------------------------------------------------

    def iterate(self, input: Dict[str, Any], context: ExecutionContext) -> FlowOutcome:
        if "arrayPath" not in input or input["arrayPath"] == "":
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Array path is required for iterator")

        array_path = input["arrayPath"]
        item_variable = input.get("itemVariable") or "item"
        index_variable = input.get("indexVariable") or "index"

        # Interpolated references arrive already resolved; plain strings
        # are paths into the previous output.
        if isinstance(array_path, str):
            items = _extract(context.previous_output(), array_path)
        else:
            items = array_path

        if not isinstance(items, list):
            raise ExecutionError(
                ErrorCode.VALIDATION_ERROR,
                f'Expected array at path "{array_path}", got {_type_name(items)}',
            )

        plan = IterationPlan(
            items=list(items),
            item_variable=item_variable,
            index_variable=index_variable,
        )
        return FlowOutcome(
            output={
                "totalItems": plan.total_items,
                "itemVariable": item_variable,
                "indexVariable": index_variable,
            },
            signal=NodeSignal.begin_iteration(plan),
        )

    def end_iterate(self, input: Dict[str, Any], context: ExecutionContext) -> FlowOutcome:
        state = context.flow_state
        output = dict(_as_output_map(context.previous_output()))
        output["collectResults"] = input.get("collectResults") is not False
        output["iterationIndex"] = state.index if state else 0
        output["isLastItem"] = state.is_last_item if state else True
        return FlowOutcome(output=output, signal=NodeSignal.value())

    # ------------------------------------------------------------------
    # Aggregator
    # ------------------------------------------------------------------

    def aggregate(self, input: Dict[str, Any], context: ExecutionContext) -> FlowOutcome:
        mode = input.get("aggregationMode") or "array"
        target_field = input.get("targetField")
        max_items = input.get("maxItems")
        state = context.flow_state

        if state is None:
            previous = context.previous_output()
            if isinstance(previous, list):
                items = [_extract(item, target_field) for item in previous]
            else:
                items = [previous]
            return self._complete(self.aggregate_items(items, input))

        key = context.current_node_id or "aggregate"
        buffer = context.aggregation_buffers.setdefault(key, [])
        buffer.append(_extract(state.item, target_field))

        limit = int(to_number(max_items)) if max_items else 0
        if (limit and len(buffer) >= limit) or state.is_last_item:
            del context.aggregation_buffers[key]
            logger.debug("Aggregator %s complete with %d items (%s)", key, len(buffer), mode)
            return self._complete(self.aggregate_items(buffer, input))

        return FlowOutcome(
            output={"pendingCount": len(buffer)},
            signal=NodeSignal.aggregation_pending(len(buffer)),
        )

    def flush_aggregation(
        self,
        node_id: str,
        input: Dict[str, Any],
        context: ExecutionContext,
    ) -> Optional[FlowOutcome]:
        """Complete an aggregation whose last item never reached it."""
        buffer = context.aggregation_buffers.pop(node_id, None)
        if not buffer:
            return None
        logger.debug("Flushing aggregator %s with %d items", node_id, len(buffer))
        return self._complete(self.aggregate_items(buffer, input))

    @staticmethod
    def _complete(result: Any) -> FlowOutcome:
        return FlowOutcome(
            output={"output": result, "data": result},
            signal=NodeSignal.aggregation_complete(result),
        )

    def aggregate_items(self, items: List[Any], input: Dict[str, Any]) -> Any:
        """Apply the aggregation mode, per group when groupByField is set."""
        mode = input.get("aggregationMode") or "array"
        group_by = input.get("groupByField")
        expression = input.get("customExpression")

        if not group_by:
            return self._aggregate_group(items, mode, expression)

        groups: "OrderedDict[str, List[Any]]" = OrderedDict()
        for item in items:
            value = _extract(item, group_by)
            groups.setdefault("undefined" if value is None else to_text(value), []).append(item)
        return {
            key: self._aggregate_group(group, mode, expression)
            for key, group in groups.items()
        }

    def _aggregate_group(self, items: List[Any], mode: str, expression: Optional[str]) -> Any:
        if mode == "first":
            return items[0] if items else None
        if mode == "last":
            return items[-1] if items else None
        if mode == "concat":
            return "".join(to_text(item) for item in items)
        if mode == "sum":
            total = sum(to_number(item) if item else 0 for item in items)
            if isinstance(total, float) and not math.isnan(total) and total.is_integer():
                return int(total)
            return total
        if mode == "count":
            return len(items)
        if mode == "custom" and expression:
            return self.evaluator.evaluate(expression, {"items": items})
        return items

    # ------------------------------------------------------------------
    # Router / Filter
    # ------------------------------------------------------------------

    def resolve_field(self, field: Any, output: Any, context: ExecutionContext) -> Any:
        """A ``{{ref}}`` is resolved from the context, anything else is a path into output."""
        if not isinstance(field, str):
            return field
        stripped = field.strip()
        if stripped.startswith("{{") and stripped.endswith("}}"):
            return resolve_variable(stripped[2:-2], context)
        return _extract(output, stripped)

    def route(self, input: Dict[str, Any], context: ExecutionContext) -> FlowOutcome:
        conditions = input.get("conditions") or []
        default_path = input.get("defaultPath") or "default"
        previous = context.previous_output()

        matched: List[str] = []
        for condition in conditions:
            value = self.resolve_field(condition.get("field"), previous, context)
            if evaluate_condition(value, condition.get("operator") or "equals", condition.get("value")):
                matched.append(condition.get("targetPath"))

        if not matched:
            matched.append(default_path)

        return FlowOutcome(
            output={"output": previous, "data": previous, "matchedPaths": matched},
            signal=NodeSignal.value(),
        )

    def filter(self, input: Dict[str, Any], context: ExecutionContext) -> FlowOutcome:
        field = input.get("filterField")
        operator = input.get("filterOperator") or "equals"
        compare = input.get("filterValue")
        pass_through = input.get("passThrough") is not False

        previous = context.previous_output()
        value = self.resolve_field(field, previous, context)

        if evaluate_condition(value, operator, compare):
            if pass_through:
                output = _as_output_map(previous)
            else:
                output = {"filtered": True, "originalValue": value}
            return FlowOutcome(output=output, signal=NodeSignal.value())

        data = {
            "filtered": False,
            "reason": f"Condition not met: {field} {operator} {'' if compare is None else compare}",
        }
        return FlowOutcome(output=data, signal=NodeSignal.filter_stopped(data))


__all__ = ["AGGREGATION_MODES", "FlowAdapter"]
