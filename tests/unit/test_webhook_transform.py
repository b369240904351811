"""Tests for the webhook and transform adapters."""
import json
from unittest.mock import patch

import pytest
import requests

from node_sdk.errors import ErrorCode
from nodepacks.transform import TransformAdapter
from nodepacks.webhook import WebhookAdapter


class TestWebhookAdapter:
    """Test trigger pass-through and generic HTTP requests."""

    def test_trigger_returns_input_with_timestamp(self, execution_context):
        execution_context.trigger_input = {"orderId": 42}
        result = WebhookAdapter().execute("webhook.trigger", {}, None, execution_context)

        assert result.success
        assert result.output["orderId"] == 42
        assert "triggeredAt" in result.output

    @patch("requests.request")
    def test_post_json_body(self, mock_request, execution_context, mock_response):
        mock_request.return_value = mock_response(status_code=201, json_data={"id": 1}, reason="Created")

        result = WebhookAdapter().execute(
            "webhook.request",
            {"url": "https://hooks.example.com/in", "method": "post", "body": {"a": 1}},
            None,
            execution_context,
        )

        assert result.success
        assert result.output["status"] == 201
        assert result.output["data"] == {"id": 1}
        assert result.output["success"] is True
        kwargs = mock_request.call_args[1]
        assert kwargs["method"] == "POST"
        assert json.loads(kwargs["data"]) == {"a": 1}
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["timeout"] == 30

    @patch("requests.request")
    def test_get_never_sends_body(self, mock_request, execution_context, mock_response):
        mock_request.return_value = mock_response(text="pong", headers={"Content-Type": "text/plain"})

        result = WebhookAdapter().execute(
            "webhook.request",
            {
                "url": "https://hooks.example.com/ping",
                "body": {"ignored": True},
                "queryParams": {"q": "x", "skip": None},
                "timeout": 5000,
            },
            None,
            execution_context,
        )

        assert result.output["data"] == "pong"
        kwargs = mock_request.call_args[1]
        assert kwargs["data"] is None
        assert kwargs["params"] == {"q": "x"}
        assert kwargs["timeout"] == 5

    @patch("requests.request")
    def test_error_status_is_not_a_failure(self, mock_request, execution_context, mock_response):
        mock_request.return_value = mock_response(
            status_code=404, json_data={"message": "nope"}, reason="Not Found"
        )

        result = WebhookAdapter().execute(
            "webhook.request", {"url": "https://hooks.example.com/x"}, None, execution_context
        )

        assert result.success
        assert result.output["success"] is False
        assert result.output["statusText"] == "Not Found"

    @patch("requests.request")
    def test_timeout_maps_to_timeout(self, mock_request, execution_context, no_sleep):
        mock_request.side_effect = requests.Timeout("slow")

        result = WebhookAdapter(sleep=no_sleep).execute(
            "webhook.request",
            {"url": "https://hooks.example.com/slow", "timeout": 1500},
            None,
            execution_context,
        )

        assert not result.success
        assert result.error.code == ErrorCode.TIMEOUT
        assert result.error.message == "Request timed out after 1500ms"
        assert result.metadata.retry_count == 3

    def test_url_required(self, execution_context):
        result = WebhookAdapter().execute("webhook.request", {}, None, execution_context)
        assert result.error.code == ErrorCode.VALIDATION_ERROR


class TestTransformAdapter:
    """Test local data transformations."""

    def setup_method(self):
        self.adapter = TransformAdapter()

    def test_json_parse_with_path(self, execution_context):
        result = self.adapter.execute(
            "json.parse", {"data": '{"user": {"name": "Ada"}}', "path": "user.name"}, None, execution_context
        )
        assert result.output == {"data": "Ada", "output": "Ada"}

    def test_json_parse_error(self, execution_context):
        result = self.adapter.execute("json.parse", {"data": "{not json"}, None, execution_context)
        assert result.error.code == ErrorCode.PARSE_ERROR

    def test_json_stringify_pretty(self, execution_context):
        result = self.adapter.execute(
            "transform.jsonStringify", {"data": {"a": 1}, "pretty": True}, None, execution_context
        )
        assert result.output["data"] == '{\n  "a": 1\n}'

    def test_template_with_variables_and_trigger(self, execution_context):
        execution_context.trigger_input = {"name": "Ada"}
        result = self.adapter.execute(
            "text.template",
            {"template": "Hi {{trigger.name}}, order {{order.id}}", "variables": {"order": {"id": 7}}},
            None,
            execution_context,
        )
        assert result.output == {"data": "Hi Ada, order 7", "output": "Hi Ada, order 7"}

    def test_template_required(self, execution_context):
        result = self.adapter.execute("text.template", {}, None, execution_context)
        assert result.error.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.parametrize(
        "operator,value,expected",
        [
            ("equals", "a", [{"k": "a", "n": 1}]),
            ("gt", 1, [{"k": "b", "n": 2}, {"k": "c", "n": 3}]),
            ("lte", 2, [{"k": "a", "n": 1}, {"k": "b", "n": 2}]),
        ],
    )
    def test_array_filter(self, execution_context, operator, value, expected):
        rows = [{"k": "a", "n": 1}, {"k": "b", "n": 2}, {"k": "c", "n": 3}]
        field = "k" if operator == "equals" else "n"
        result = self.adapter.execute(
            "array.filter",
            {"array": rows, "field": field, "operator": operator, "value": value},
            None,
            execution_context,
        )
        assert result.output["data"] == expected
        assert result.output["count"] == len(expected)

    def test_array_map_fields_and_rename(self, execution_context):
        rows = [{"id": 1, "name": "Ada", "secret": "x"}]

        picked = self.adapter.execute(
            "array.map", {"array": rows, "fields": ["id", "name"]}, None, execution_context
        )
        renamed = self.adapter.execute(
            "array.map", {"array": rows, "transform": {"name": "fullName"}}, None, execution_context
        )

        assert picked.output["data"] == [{"id": 1, "name": "Ada"}]
        assert renamed.output["data"] == [{"fullName": "Ada"}]

    def test_array_required(self, execution_context):
        result = self.adapter.execute("array.map", {"array": "nope"}, None, execution_context)
        assert result.error.code == ErrorCode.VALIDATION_ERROR
