"""
Webhook Adapter - Trigger pass-through and generic HTTP requests.

webhook.trigger is the synthetic start node of a workflow: it emits
the run's trigger payload. webhook.request performs one HTTP call and
returns the response regardless of status; only transport failures
(timeout, connection) are errors.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from node_sdk.base import BaseAdapter
from node_sdk.context import ExecutionContext, utcnow
from node_sdk.credentials import Credentials
from node_sdk.errors import ErrorCode, ExecutionError


logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_MS = 30_000
_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


class WebhookAdapter(BaseAdapter):
    """Trigger and outbound HTTP request node."""

    provider = "webhook"
    supported_operations = ("webhook.trigger", "webhook.request")
    requires_credentials = False

    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        if operation == "webhook.trigger":
            return self.trigger(context)
        return self.request(input)

    def trigger(self, context: ExecutionContext) -> Dict[str, Any]:
        return {**context.trigger_input, "triggeredAt": utcnow().isoformat()}

    def request(self, input: Dict[str, Any]) -> Dict[str, Any]:
        self.require(input, "url")

        method = str(input.get("method") or "GET").upper()
        headers: Dict[str, str] = {str(k): str(v) for k, v in (input.get("headers") or {}).items()}
        params = {
            str(k): v for k, v in (input.get("queryParams") or {}).items() if v is not None
        }
        timeout_ms = input.get("timeout") or DEFAULT_REQUEST_TIMEOUT_MS
        response_type = input.get("responseType") or "json"

        body = input.get("body")
        data: Optional[str] = None
        if body is not None and method not in _BODYLESS_METHODS:
            if isinstance(body, (dict, list)):
                data = json.dumps(body)
                if not any(k.lower() == "content-type" for k in headers):
                    headers["Content-Type"] = "application/json"
            else:
                data = str(body)

        try:
            response = self.http_client().request(
                method,
                input["url"],
                params=params or None,
                data=data,
                headers=headers,
                timeout=float(timeout_ms) / 1000,
                check_status=False,
            )
        except ExecutionError as e:
            if e.code == ErrorCode.TIMEOUT:
                raise ExecutionError(
                    ErrorCode.TIMEOUT,
                    f"Request timed out after {timeout_ms}ms",
                    details=e.details,
                ) from e
            raise

        if response_type == "text":
            payload: Any = response.text
        else:
            payload = response.json_or_none()
            if payload is None:
                payload = response.text

        return {
            "success": response.ok,
            "status": response.status_code,
            "statusText": response.reason,
            "headers": response.headers,
            "data": payload,
            "output": payload,
        }


__all__ = ["WebhookAdapter"]
