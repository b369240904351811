"""
Email Adapter - Transactional email through the Resend API.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from flowmesh.config import get_settings
from node_sdk.base import BaseAdapter
from node_sdk.conditions import to_text
from node_sdk.context import ExecutionContext
from node_sdk.credentials import ApiKeyCredentials, Credentials
from node_sdk.errors import ErrorCode, ExecutionError


logger = logging.getLogger(__name__)

_TEMPLATE_KEY = re.compile(r"\{\{(\w+)\}\}")


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]


class EmailAdapter(BaseAdapter):
    """Send plain or templated email."""

    provider = "email"
    supported_operations = ("email.send", "email.sendTemplate")
    operation_aliases = {"send": "email.send", "sendTemplate": "email.sendTemplate"}
    # Template placeholders are filled from ``variables`` by this adapter
    preserve_keys = frozenset({"template"})

    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        api_key = self._api_key(credentials)
        if operation == "email.sendTemplate":
            return self.send_template(input, api_key)
        return self.send(input, api_key)

    def _api_key(self, credentials: Optional[Credentials]) -> str:
        if credentials is None:
            raise ExecutionError(ErrorCode.MISSING_CREDENTIALS, "Email API key is required")
        if not isinstance(credentials, ApiKeyCredentials):
            raise ExecutionError(
                ErrorCode.INVALID_CREDENTIALS, "Email provider requires an API key credential"
            )
        return credentials.api_key

    def send(self, input: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        sender = input.get("from") or get_settings().email_default_from
        to = input.get("to")
        text = input.get("text") or input.get("body")
        html = input.get("html")
        subject = input.get("subject") or "(No Subject)"

        if not sender:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Sender (from) is required")
        if not to:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Recipient (to) is required")
        if not text and not html:
            raise ExecutionError(
                ErrorCode.VALIDATION_ERROR, "Email body (text or html) is required"
            )

        payload: Dict[str, Any] = {
            "from": sender,
            "to": _as_list(to),
            "subject": subject,
        }
        if text:
            payload["text"] = to_text(text)
        if html:
            payload["html"] = to_text(html)
        for key, api_key_name in (("cc", "cc"), ("bcc", "bcc"), ("replyTo", "reply_to")):
            if input.get(key):
                payload[api_key_name] = _as_list(input[key])
        for key in ("headers", "attachments", "tags"):
            if input.get(key):
                payload[key] = input[key]

        client = self.http_client(get_settings().resend_base_url, bearer_token=api_key)
        response = client.post("/emails", json=payload)
        result = response.json_or_none() or {}

        logger.info("Email sent: %s (%d recipients)", result.get("id"), len(payload["to"]))
        return {
            "messageId": result.get("id"),
            "to": payload["to"],
            "from": sender,
            "subject": subject,
        }

    def send_template(self, input: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        template = input.get("template")
        if not input.get("from") and not get_settings().email_default_from:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "From, to, and template are required")
        if not input.get("to") or not template:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "From, to, and template are required")

        variables = input.get("variables") or {}
        html = _TEMPLATE_KEY.sub(
            lambda m: "" if variables.get(m.group(1)) is None else to_text(variables[m.group(1)]),
            str(template),
        )

        return self.send(
            {
                "from": input.get("from"),
                "to": input["to"],
                "subject": input.get("subject"),
                "html": html,
                "cc": input.get("cc"),
                "bcc": input.get("bcc"),
                "replyTo": input.get("replyTo"),
            },
            api_key,
        )


__all__ = ["EmailAdapter"]
