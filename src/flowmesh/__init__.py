"""
flowmesh - Workflow execution engine.

Ambient services shared by the engine packages:
- config: pydantic-settings based configuration
- observability: structured JSON logging with execution trace context
- cli: command line runner for workflow files

The engine itself lives in ``workflow_runtime`` (scheduler) and
``node_sdk``/``nodepacks`` (adapter kernel and provider adapters).
"""

__version__ = "0.3.0"
