"""Pytest configuration and fixtures."""
import json
import os
from typing import Any, List, Optional
from unittest.mock import Mock

import pytest

# Set test environment variables
os.environ["FLOWMESH_ENV"] = "test"

# Fallback credentials must never leak in from the developer's shell
_CREDENTIAL_ENV_VARS = (
    "OPENAI_API_KEY",
    "FLOWMESH_OPENAI_API_KEY",
    "RESEND_TOKEN",
    "FLOWMESH_RESEND_TOKEN",
    "GOOGLE_SHEETS_CREDENTIALS",
    "FLOWMESH_GOOGLE_SHEETS_CREDENTIALS",
    "GOOGLE_CLIENT_ID",
    "FLOWMESH_GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "FLOWMESH_GOOGLE_CLIENT_SECRET",
    "FLOWMESH_EMAIL_DEFAULT_FROM",
    "FLOWMESH_WORKFLOW_DEADLINE_S",
)


@pytest.fixture(autouse=True)
def clean_engine_state(monkeypatch):
    """Reset every process-wide singleton around each test."""
    from flowmesh.config import reset_settings
    from node_sdk.credentials import reset_credential_manager
    from node_sdk.rate_limit import clear_rate_limit_state
    from nodepacks import reset_registry
    from workflow_runtime.registry import reset_node_types

    for name in _CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    reset_settings()
    reset_credential_manager()
    clear_rate_limit_state()
    reset_registry()
    reset_node_types()
    yield
    reset_settings()
    reset_credential_manager()
    clear_rate_limit_state()
    reset_registry()
    reset_node_types()


@pytest.fixture
def execution_context():
    """Create a test execution context."""
    from node_sdk.context import ExecutionContext

    return ExecutionContext(
        workflow_id="wf-test",
        user_id="user-1",
        execution_id="exec-123",
    )


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    calls: List[float] = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep


@pytest.fixture
def mock_response():
    """Factory for fake ``requests.Response`` objects."""

    def make(
        status_code: int = 200,
        json_data: Any = None,
        text: Optional[str] = None,
        lines: Optional[List[str]] = None,
        reason: str = "OK",
        headers: Optional[dict] = None,
    ) -> Mock:
        response = Mock()
        response.status_code = status_code
        response.ok = 200 <= status_code < 300
        response.reason = reason
        response.headers = headers or {"Content-Type": "application/json"}

        if json_data is not None:
            response.text = json.dumps(json_data)
            response.json.return_value = json_data
        else:
            response.text = text or ""
            response.json.side_effect = ValueError("No JSON object could be decoded")
        response.content = response.text.encode("utf-8")
        response.iter_lines.return_value = list(lines or [])
        return response

    return make
