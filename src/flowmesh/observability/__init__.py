"""Observability package."""
from flowmesh.observability.logging import (
    get_logger,
    setup_logging,
    with_trace_context,
)

__all__ = ["get_logger", "setup_logging", "with_trace_context"]
