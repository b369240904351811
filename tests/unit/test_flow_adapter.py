"""Tests for the flow control adapter (iterator, aggregator, router, filter)."""
import pytest

from node_sdk.context import FlowState, NodeExecutionResult, SignalKind
from node_sdk.errors import ErrorCode
from nodepacks.flow import FlowAdapter


@pytest.fixture
def adapter():
    return FlowAdapter()


def _with_previous(context, output):
    context.record_result("prev", NodeExecutionResult(success=True, output=output))
    return context


class TestIterator:
    """Test flow.iterate."""

    def test_path_into_previous_output(self, adapter, execution_context):
        _with_previous(execution_context, {"data": {"rows": [1, 2, 3]}})

        result = adapter.execute(
            "flow.iterate", {"arrayPath": "data.rows", "itemVariable": "row"}, None, execution_context
        )

        assert result.success
        assert result.output == {"totalItems": 3, "itemVariable": "row", "indexVariable": "index"}
        assert result.signal.kind == SignalKind.BEGIN_ITERATION
        assert result.signal.plan.items == [1, 2, 3]
        assert result.signal.plan.item_variable == "row"

    def test_already_resolved_array(self, adapter, execution_context):
        result = adapter.execute("flow.iterate", {"arrayPath": ["a", "b"]}, None, execution_context)
        assert result.signal.plan.total_items == 2

    def test_non_array_fails(self, adapter, execution_context):
        _with_previous(execution_context, {"data": {"rows": "nope"}})

        result = adapter.execute("flow.iterate", {"arrayPath": "data.rows"}, None, execution_context)

        assert not result.success
        assert result.error.code == ErrorCode.VALIDATION_ERROR
        assert result.error.message == 'Expected array at path "data.rows", got string'

    def test_array_path_required(self, adapter, execution_context):
        result = adapter.execute("flow.iterate", {}, None, execution_context)
        assert result.error.message == "Array path is required for iterator"

    def test_end_iterate(self, adapter, execution_context):
        _with_previous(execution_context, {"value": 1})
        execution_context.flow_state = FlowState(item="x", index=1, total_items=2)

        result = adapter.execute("flow.endIterate", {}, None, execution_context)

        assert result.output == {"value": 1, "collectResults": True, "iterationIndex": 1, "isLastItem": True}


class TestAggregator:
    """Test flow.aggregate inside and outside iterations."""

    def _run_items(self, adapter, context, items, config, node_id="agg"):
        results = []
        for index, item in enumerate(items):
            context.flow_state = FlowState(item=item, index=index, total_items=len(items))
            context.current_node_id = node_id
            results.append(adapter.execute("flow.aggregate", config, None, context))
        context.flow_state = None
        context.current_node_id = None
        return results

    def test_buffers_until_last_item(self, adapter, execution_context):
        items = [{"n": 1}, {"n": 2}, {"n": 3}]
        results = self._run_items(adapter, execution_context, items, {"aggregationMode": "array"})

        assert [r.signal.kind for r in results] == [
            SignalKind.AGGREGATION_PENDING,
            SignalKind.AGGREGATION_PENDING,
            SignalKind.AGGREGATION_COMPLETE,
        ]
        assert results[1].output == {"pendingCount": 2}
        assert results[2].signal.data == items
        assert results[2].output == {"output": items, "data": items}
        assert "agg" not in execution_context.aggregation_buffers

    def test_max_items_completes_early(self, adapter, execution_context):
        results = self._run_items(
            adapter, execution_context, [1, 2, 3, 4], {"aggregationMode": "sum", "maxItems": 2}
        )
        kinds = [r.signal.kind for r in results]
        assert kinds[1] == SignalKind.AGGREGATION_COMPLETE
        assert results[1].signal.data == 3
        assert kinds[3] == SignalKind.AGGREGATION_COMPLETE
        assert results[3].signal.data == 7

    @pytest.mark.parametrize(
        "mode,expected",
        [
            ("first", 1),
            ("last", 3),
            ("count", 3),
            ("sum", 6),
            ("concat", "123"),
        ],
    )
    def test_modes_with_target_field(self, adapter, execution_context, mode, expected):
        results = self._run_items(
            adapter,
            execution_context,
            [{"n": 1}, {"n": 2}, {"n": 3}],
            {"aggregationMode": mode, "targetField": "n"},
        )
        assert results[-1].signal.data == expected

    def test_sum_keeps_fractions(self, adapter, execution_context):
        results = self._run_items(adapter, execution_context, [1.5, 2], {"aggregationMode": "sum"})
        assert results[-1].signal.data == 3.5

    def test_group_by(self, adapter, execution_context):
        items = [
            {"team": "a", "pts": 1},
            {"team": "b", "pts": 5},
            {"team": "a", "pts": 2},
            {"pts": 9},
        ]
        results = self._run_items(
            adapter,
            execution_context,
            items,
            {"aggregationMode": "count", "groupByField": "team"},
        )
        assert results[-1].signal.data == {"a": 2, "b": 1, "undefined": 1}

    def test_custom_expression(self, adapter, execution_context):
        results = self._run_items(
            adapter,
            execution_context,
            [{"price": 2, "qty": 3}, {"price": 5, "qty": 1}],
            {"aggregationMode": "custom", "customExpression": "sum(i.price * i.qty for i in items)"},
        )
        assert results[-1].signal.data == 11

    def test_custom_expression_error(self, adapter, execution_context):
        results = self._run_items(
            adapter,
            execution_context,
            [1],
            {"aggregationMode": "custom", "customExpression": "items.__class__"},
        )
        assert results[-1].error.code == ErrorCode.EXPRESSION_ERROR

    def test_buffers_are_per_aggregator(self, adapter, execution_context):
        execution_context.flow_state = FlowState(item=1, index=0, total_items=2)
        execution_context.current_node_id = "agg-a"
        adapter.execute("flow.aggregate", {}, None, execution_context)
        execution_context.current_node_id = "agg-b"
        adapter.execute("flow.aggregate", {}, None, execution_context)

        assert execution_context.aggregation_buffers == {"agg-a": [1], "agg-b": [1]}

    def test_outside_iteration_aggregates_previous_list(self, adapter, execution_context):
        _with_previous(execution_context, [{"n": 4}, {"n": 6}])
        result = adapter.execute(
            "flow.aggregate", {"aggregationMode": "sum", "targetField": "n"}, None, execution_context
        )
        assert result.signal.kind == SignalKind.AGGREGATION_COMPLETE
        assert result.signal.data == 10

    def test_flush_pending_buffer(self, adapter, execution_context):
        execution_context.aggregation_buffers["agg"] = [1, 2]

        outcome = adapter.flush_aggregation("agg", {"aggregationMode": "count"}, execution_context)

        assert outcome.signal.kind == SignalKind.AGGREGATION_COMPLETE
        assert outcome.signal.data == 2
        assert adapter.flush_aggregation("agg", {}, execution_context) is None


class TestRouterAndFilter:
    """Test flow.route and flow.filter."""

    def test_route_matches_paths(self, adapter, execution_context):
        _with_previous(execution_context, {"tier": "vip", "total": 250})
        config = {
            "conditions": [
                {"field": "tier", "operator": "equals", "value": "vip", "targetPath": "vip"},
                {"field": "total", "operator": "gt", "value": 100, "targetPath": "big"},
                {"field": "tier", "operator": "equals", "value": "basic", "targetPath": "basic"},
            ],
        }

        result = adapter.execute("flow.route", config, None, execution_context)

        assert result.output["matchedPaths"] == ["vip", "big"]
        assert result.output["data"] == {"tier": "vip", "total": 250}

    def test_route_default_path(self, adapter, execution_context):
        _with_previous(execution_context, {"tier": "basic"})
        config = {
            "conditions": [{"field": "tier", "operator": "equals", "value": "vip", "targetPath": "vip"}],
            "defaultPath": "fallback",
        }
        result = adapter.execute("flow.route", config, None, execution_context)
        assert result.output["matchedPaths"] == ["fallback"]

    def test_route_field_reference(self, adapter, execution_context):
        execution_context.trigger_input = {"country": "FR"}
        _with_previous(execution_context, {})
        config = {
            "conditions": [
                {"field": "{{trigger.country}}", "operator": "equals", "value": "FR", "targetPath": "eu"},
            ],
        }
        result = adapter.execute("flow.route", config, None, execution_context)
        assert result.output["matchedPaths"] == ["eu"]

    def test_filter_pass_through(self, adapter, execution_context):
        _with_previous(execution_context, {"status": "active", "id": 1})

        result = adapter.execute(
            "flow.filter",
            {"filterField": "status", "filterOperator": "equals", "filterValue": "active"},
            None,
            execution_context,
        )

        assert result.signal.kind == SignalKind.VALUE
        assert result.output == {"status": "active", "id": 1}

    def test_filter_without_pass_through(self, adapter, execution_context):
        _with_previous(execution_context, {"status": "active"})

        result = adapter.execute(
            "flow.filter",
            {"filterField": "status", "filterValue": "active", "passThrough": False},
            None,
            execution_context,
        )

        assert result.output == {"filtered": True, "originalValue": "active"}

    def test_filter_stop(self, adapter, execution_context):
        _with_previous(execution_context, {"status": "inactive"})

        result = adapter.execute(
            "flow.filter",
            {"filterField": "status", "filterOperator": "equals", "filterValue": "active"},
            None,
            execution_context,
        )

        assert result.success
        assert result.signal.kind == SignalKind.FILTER_STOPPED
        assert result.signal.data == {
            "filtered": False,
            "reason": "Condition not met: status equals active",
        }
