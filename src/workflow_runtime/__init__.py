"""
Workflow Runtime - Sequential execution of node/edge workflows.

This package provides:
- WorkflowContent: JSON structure describing a workflow
- ExecutionGraph: Linear execution order and iteration bodies
- Interpolation: {{trigger|previous|nodes|flow|env}} references
- WorkflowResolver: The execution engine (iteration, filter, router)

All execution is synchronous (sync-worker safe).
"""

from .models import WorkflowContent, WorkflowEdge, WorkflowNode, parse_workflow
from .graph import ExecutionGraph, build_execution_order
from .interpolation import (
    interpolate_config,
    interpolate_string,
    resolve_path_value,
    resolve_variable,
    validate_variables,
)
from .registry import (
    NodeTypeMapping,
    get_node_type_mapping,
    register_node_type,
    resolve_operation,
)
from .resolver import (
    NodeRunRecord,
    WorkflowExecutionResult,
    WorkflowResolver,
    execute_workflow,
)

__all__ = [
    # Models
    "WorkflowContent",
    "WorkflowEdge",
    "WorkflowNode",
    "parse_workflow",
    # Graph
    "ExecutionGraph",
    "build_execution_order",
    # Interpolation
    "interpolate_config",
    "interpolate_string",
    "resolve_path_value",
    "resolve_variable",
    "validate_variables",
    # Node types
    "NodeTypeMapping",
    "get_node_type_mapping",
    "register_node_type",
    "resolve_operation",
    # Resolver
    "NodeRunRecord",
    "WorkflowExecutionResult",
    "WorkflowResolver",
    "execute_workflow",
]
