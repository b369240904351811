"""
Workflow Resolver - Sequential workflow execution engine.

Executes a workflow's nodes one at a time in BFS order:
1. Build the execution order (trigger-first BFS)
2. Preload credentials for every provider the run touches
3. Interpolate each node's config and dispatch it to its adapter
4. Act on the node's signal: run iteration bodies once per item,
   stop on a failed filter, prune branches a router did not select

Any node failure ends the run; results produced so far are returned.

SYNC-WORKER SAFE: All execution is synchronous.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from flowmesh.config import get_settings
from flowmesh.observability import with_trace_context
from node_sdk.base import BaseAdapter
from node_sdk.context import (
    ExecutionContext,
    ExecutionMetadata,
    FlowOutcome,
    FlowState,
    IterationPlan,
    NodeExecutionResult,
    SignalKind,
    utcnow,
)
from node_sdk.credentials import (
    Credentials,
    create_api_key_credentials,
    create_service_account_credentials,
    get_credential_manager,
)
from node_sdk.errors import ErrorCode, ExecutionError, normalize_error
from nodepacks import get_provider_adapter

from .graph import ExecutionGraph
from .interpolation import interpolate_config, validate_variables
from .models import WorkflowContent, WorkflowNode, parse_workflow
from .registry import NodeTypeMapping, resolve_operation


logger = logging.getLogger(__name__)


@dataclass
class NodeRunRecord:
    """One node execution as reported to the caller."""
    node_id: str
    node_type: str
    result: NodeExecutionResult

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def output(self) -> Dict[str, Any]:
        return self.result.output

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "result": self.result.to_dict(),
        }


@dataclass
class WorkflowExecutionResult:
    """
    Result of one workflow run.
    """
    success: bool
    execution_id: str
    workflow_id: str
    started_at: datetime
    completed_at: datetime
    duration_ms: float = 0
    output: Optional[Dict[str, Any]] = None
    error: Optional[ExecutionError] = None
    node_results: List[NodeRunRecord] = field(default_factory=list)
    aggregated_results: List[Any] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.success

    def results_for(self, node_id: str) -> List[NodeExecutionResult]:
        """Every result a node produced (one per item inside iterations)."""
        return [r.result for r in self.node_results if r.node_id == node_id]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
            "duration": round(self.duration_ms, 3),
            "nodeResults": [r.to_dict() for r in self.node_results],
        }
        if self.output is not None:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.aggregated_results:
            data["aggregatedResults"] = self.aggregated_results
        return data


class _RunAborted(Exception):
    """Internal: a node failed and the run must stop."""

    def __init__(self, error: ExecutionError):
        super().__init__(error.message)
        self.error = error


class _RunState:
    """Mutable bookkeeping for one execute() call."""

    def __init__(self, graph: ExecutionGraph):
        self.graph = graph
        self.records: List[NodeRunRecord] = []
        self.aggregated: List[Any] = []
        self.skip: Set[str] = set()
        self.pruned: Set[str] = set()
        # router node id -> matched paths
        self.routes: Dict[str, List[str]] = {}


class WorkflowResolver:
    """
    Sequential workflow executor.

    Usage:
        resolver = WorkflowResolver(user_id="u1", workflow_id="wf1")
        result = resolver.execute(content, trigger_input={"name": "Ada"})
    """

    def __init__(
        self,
        user_id: str,
        workflow_id: str,
        credential_manager: Any = None,
    ):
        """
        Args:
            user_id: Owner of the run (credentials and rate limits)
            workflow_id: Workflow being executed
            credential_manager: Overrides the global CredentialManager
        """
        self.user_id = user_id
        self.workflow_id = workflow_id
        self._credential_manager = credential_manager

    @property
    def credential_manager(self) -> Any:
        return self._credential_manager or get_credential_manager()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def execute(
        self,
        content: WorkflowContent | Dict[str, Any],
        trigger_input: Optional[Dict[str, Any]] = None,
        deadline_s: Optional[float] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute a complete workflow.

        Args:
            content: Workflow graph or its JSON dict
            trigger_input: Payload exposed as ``trigger``
            deadline_s: Overall deadline in seconds (settings default when None)

        Returns:
            WorkflowExecutionResult; never raises for node failures
        """
        started_at = utcnow()
        started = time.perf_counter()
        execution_id = str(uuid.uuid4())

        deadline_s = deadline_s if deadline_s is not None else get_settings().workflow_deadline_s
        context = ExecutionContext(
            workflow_id=self.workflow_id,
            user_id=self.user_id,
            execution_id=execution_id,
            trigger_input=dict(trigger_input or {}),
            deadline=time.monotonic() + deadline_s if deadline_s else None,
            credential_manager=self._credential_manager,
        )
        extra = with_trace_context(
            execution_id=execution_id,
            workflow_id=self.workflow_id,
            user_id=self.user_id,
        )

        def finish(
            success: bool,
            state: Optional[_RunState],
            error: Optional[ExecutionError] = None,
            output: Optional[Dict[str, Any]] = None,
        ) -> WorkflowExecutionResult:
            return WorkflowExecutionResult(
                success=success,
                execution_id=execution_id,
                workflow_id=self.workflow_id,
                started_at=started_at,
                completed_at=utcnow(),
                duration_ms=(time.perf_counter() - started) * 1000,
                output=output,
                error=error,
                node_results=state.records if state else [],
                aggregated_results=state.aggregated if state else [],
            )

        state: Optional[_RunState] = None
        try:
            workflow = parse_workflow(content)
            graph = ExecutionGraph(workflow)

            if len(graph) == 0:
                return finish(
                    False,
                    None,
                    ExecutionError(
                        ErrorCode.EMPTY_WORKFLOW,
                        "No executable nodes in workflow",
                        retryable=False,
                    ),
                )

            logger.info(
                "Executing workflow %s (%d nodes)", self.workflow_id, len(graph), extra=extra
            )
            self.load_workflow_credentials(graph.execution_order, context)

            state = _RunState(graph)
            self._run(state, context)

        except _RunAborted as e:
            logger.error(
                "Workflow %s failed: [%s] %s", self.workflow_id, e.error.code, e.error.message,
                extra=extra,
            )
            return finish(False, state, e.error)
        except Exception as e:
            error = normalize_error(e)
            logger.error(
                "Workflow %s failed: [%s] %s", self.workflow_id, error.code, error.message,
                extra=extra,
            )
            return finish(False, state, error)

        logger.info(
            "Workflow %s completed (%d node runs)", self.workflow_id, len(state.records),
            extra=extra,
        )
        return finish(True, state, output=self._final_output(state))

    def test_node(
        self,
        node: WorkflowNode | Dict[str, Any],
        test_input: Optional[Dict[str, Any]] = None,
        node_outputs: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> NodeExecutionResult:
        """
        Execute one node against a mock context.

        Args:
            node: The node to run
            test_input: Trigger payload for the mock run
            node_outputs: Outputs of upstream nodes, keyed by node id
        """
        if not isinstance(node, WorkflowNode):
            node = WorkflowNode.model_validate(node)

        context = ExecutionContext(
            workflow_id="test",
            user_id=self.user_id,
            trigger_input=dict(test_input or {}),
            credential_manager=self._credential_manager,
        )
        for node_id, output in (node_outputs or {}).items():
            context.record_result(
                node_id, NodeExecutionResult(success=True, output=output, node_id=node_id)
            )

        try:
            self.load_workflow_credentials([node], context)
        except Exception as e:
            return NodeExecutionResult(success=False, error=normalize_error(e), node_id=node.id)
        return self.execute_node(node, context)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _run(self, state: _RunState, context: ExecutionContext) -> None:
        order = state.graph.execution_order

        for node in order:
            if node.id in state.skip:
                continue
            if self._is_pruned(node, state.graph, state.pruned, state.routes):
                state.pruned.add(node.id)
                logger.debug("Skipping node %s (branch not selected)", node.id)
                continue

            result = self._run_node(node, context, state)
            kind = result.signal.kind

            if kind == SignalKind.BEGIN_ITERATION and result.signal.plan is not None:
                self._run_iteration(node, result.signal.plan, context, state)
            elif kind == SignalKind.FILTER_STOPPED:
                logger.info("Filter %s stopped the run", node.id)
                return

    def _run_node(
        self,
        node: WorkflowNode,
        context: ExecutionContext,
        state: _RunState,
        routes: Optional[Dict[str, List[str]]] = None,
    ) -> NodeExecutionResult:
        """Execute, record and check one node; raises _RunAborted on failure."""
        if context.is_past_deadline():
            raise _RunAborted(ExecutionError(
                ErrorCode.TIMEOUT,
                f"Workflow deadline exceeded before node {node.id}",
                retryable=False,
            ))

        result = self.execute_node(node, context)
        context.record_result(node.id, result)
        state.records.append(NodeRunRecord(node_id=node.id, node_type=node.type, result=result))

        if not result.success:
            raise _RunAborted(result.error or ExecutionError(ErrorCode.UNKNOWN, "Node failed"))

        if result.signal.kind == SignalKind.AGGREGATION_COMPLETE:
            state.aggregated.append(result.signal.data)
        if result.metadata.operation == "flow.route":
            (state.routes if routes is None else routes)[node.id] = list(
                result.output.get("matchedPaths") or []
            )
        return result

    def _run_iteration(
        self,
        iterator: WorkflowNode,
        plan: IterationPlan,
        context: ExecutionContext,
        state: _RunState,
    ) -> None:
        body = state.graph.get_nodes_until_aggregator(iterator.id)
        state.skip.update(node.id for node in body)
        if not body or not plan.items:
            logger.debug("Iterator %s has nothing to run", iterator.id)
            return

        logger.debug(
            "Iterator %s: %d items over %d nodes", iterator.id, plan.total_items, len(body)
        )
        try:
            for index, item in enumerate(plan.items):
                context.flow_state = FlowState(item=item, index=index, total_items=plan.total_items)
                context.variables["flow"] = {
                    "item": item,
                    "index": index,
                    "totalItems": plan.total_items,
                    plan.item_variable: item,
                    plan.index_variable: index,
                }

                pruned = set(state.pruned)
                routes = dict(state.routes)
                for node in body:
                    if self._is_pruned(node, state.graph, pruned, routes):
                        pruned.add(node.id)
                        continue
                    result = self._run_node(node, context, state, routes)
                    if result.signal.kind == SignalKind.FILTER_STOPPED:
                        # Skip the rest of this item's body
                        break

            context.flow_state = None
            self._flush_aggregators(body, context, state)
        finally:
            context.flow_state = None
            context.variables.pop("flow", None)

    def _flush_aggregators(
        self,
        body: List[WorkflowNode],
        context: ExecutionContext,
        state: _RunState,
    ) -> None:
        """Complete aggregators whose buffer is still pending after the loop."""
        for node in body:
            if node.id not in context.aggregation_buffers:
                continue
            adapter = get_provider_adapter("flow")
            flush = getattr(adapter, "flush_aggregation", None)
            if flush is None:
                continue

            metadata = ExecutionMetadata(provider="flow", operation="flow.aggregate")
            context.current_node_id = node.id
            try:
                config = interpolate_config(node.data, context, adapter.preserve_keys)
                outcome: Optional[FlowOutcome] = flush(node.id, config, context)
            except Exception as e:
                error = normalize_error(e)
                result = NodeExecutionResult(
                    success=False, error=error, metadata=metadata, node_id=node.id
                )
            else:
                if outcome is None:
                    continue
                result = NodeExecutionResult(
                    success=True,
                    output=outcome.output,
                    signal=outcome.signal,
                    metadata=metadata,
                    node_id=node.id,
                )
            finally:
                context.current_node_id = None
            metadata.completed_at = utcnow()

            context.record_result(node.id, result)
            state.records.append(NodeRunRecord(node_id=node.id, node_type=node.type, result=result))
            if not result.success:
                raise _RunAborted(result.error)
            state.aggregated.append(result.signal.data)

    @staticmethod
    def _is_pruned(
        node: WorkflowNode,
        graph: ExecutionGraph,
        pruned: Set[str],
        routes: Dict[str, List[str]],
    ) -> bool:
        """
        True when every incoming edge is dead: it leaves a pruned node, or
        it leaves a router through a handle the router did not select.
        """
        incoming = graph.incoming_edges(node.id)
        if not incoming:
            return False

        def dead(edge: Any) -> bool:
            if edge.source in pruned:
                return True
            matched = routes.get(edge.source)
            return matched is not None and bool(edge.source_handle) and edge.source_handle not in matched

        return all(dead(edge) for edge in incoming)

    @staticmethod
    def _final_output(state: _RunState) -> Dict[str, Any]:
        """Output of the last node actually executed."""
        if not state.records:
            return {}
        return state.records[-1].result.output

    # ------------------------------------------------------------------
    # Single node
    # ------------------------------------------------------------------

    def execute_node(self, node: WorkflowNode, context: ExecutionContext) -> NodeExecutionResult:
        """
        Interpolate a node's config and dispatch it to its adapter.

        Unknown node types succeed with an empty output.
        """
        mapping = resolve_operation(node)
        if mapping is None:
            logger.warning("Unknown node type %s (node %s), skipping", node.type, node.id)
            metadata = ExecutionMetadata(completed_at=utcnow())
            return NodeExecutionResult(success=True, output={}, metadata=metadata, node_id=node.id)

        extra = with_trace_context(
            execution_id=context.execution_id,
            workflow_id=context.workflow_id,
            node_id=node.id,
            provider=mapping.provider,
            operation=mapping.operation,
        )

        adapter = get_provider_adapter(mapping.provider)
        if adapter is None:
            return self._failure(
                node,
                mapping,
                ExecutionError(
                    ErrorCode.UNSUPPORTED_OPERATION,
                    f"Unknown provider: {mapping.provider}",
                    retryable=False,
                ),
            )

        report = validate_variables(
            {k: v for k, v in node.data.items() if k not in adapter.preserve_keys}, context
        )
        if not report.valid:
            logger.warning(
                "Node %s references unresolved variables: %s",
                node.id, ", ".join(report.missing), extra=extra,
            )

        config = interpolate_config(node.data, context, adapter.preserve_keys)

        credentials = context.credentials.get(mapping.provider)
        if credentials is None and adapter.requires_credentials:
            return self._failure(
                node,
                mapping,
                ExecutionError(
                    ErrorCode.MISSING_CREDENTIALS,
                    f"No credentials found for provider: {mapping.provider}",
                    retryable=False,
                    provider=mapping.provider,
                ),
            )

        logger.debug("Executing node %s (%s)", node.id, mapping.operation, extra=extra)
        context.current_node_id = node.id
        try:
            result = adapter.execute(mapping.operation, config, credentials, context)
        finally:
            context.current_node_id = None
        result.node_id = node.id

        if not result.success and result.error is not None:
            logger.error(
                "Node %s failed: [%s] %s", node.id, result.error.code, result.error.message,
                extra=extra,
            )
        return result

    @staticmethod
    def _failure(
        node: WorkflowNode,
        mapping: NodeTypeMapping,
        error: ExecutionError,
    ) -> NodeExecutionResult:
        error.provider = error.provider or mapping.provider
        error.operation = error.operation or mapping.operation
        metadata = ExecutionMetadata(
            completed_at=utcnow(),
            provider=mapping.provider,
            operation=mapping.operation,
        )
        return NodeExecutionResult(success=False, error=error, metadata=metadata, node_id=node.id)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def load_workflow_credentials(
        self,
        nodes: List[WorkflowNode],
        context: ExecutionContext,
    ) -> None:
        """Resolve credentials for every provider the nodes use."""
        providers: List[str] = []
        for node in nodes:
            mapping = resolve_operation(node)
            if mapping is not None and mapping.provider not in providers:
                providers.append(mapping.provider)

        for provider in providers:
            adapter = get_provider_adapter(provider)
            if adapter is None:
                continue

            if not adapter.requires_credentials:
                # Local operations; a placeholder keeps the contract uniform
                context.credentials[provider] = create_api_key_credentials("none")
                continue

            credentials = self.credential_manager.get_credentials(
                self.user_id, provider, refresher=_refresher_for(adapter)
            )
            if credentials is None:
                credentials = get_env_credentials(provider)
                if credentials is not None:
                    logger.debug("Using environment credentials for %s", provider)

            if credentials is not None:
                context.credentials[provider] = credentials


def _refresher_for(adapter: BaseAdapter) -> Any:
    """The adapter's OAuth2 refresher, None when it does not override one."""
    if type(adapter).refresh_credentials is BaseAdapter.refresh_credentials:
        return None
    return adapter.refresh_credentials


def get_env_credentials(provider: str) -> Optional[Credentials]:
    """Fallback credentials sourced from settings / environment variables."""
    settings = get_settings()

    if provider == "openai" and settings.openai_api_key is not None:
        return create_api_key_credentials(settings.openai_api_key.get_secret_value())

    if provider == "email" and settings.resend_token is not None:
        return create_api_key_credentials(settings.resend_token.get_secret_value())

    if provider == "google":
        account = settings.get_google_service_account()
        if account and account.get("client_email") and account.get("private_key"):
            return create_service_account_credentials(
                client_email=account["client_email"],
                private_key=account["private_key"],
                project_id=account.get("project_id"),
            )

    return None


def create_workflow_resolver(user_id: str, workflow_id: str) -> WorkflowResolver:
    return WorkflowResolver(user_id, workflow_id)


def execute_workflow(
    user_id: str,
    workflow_id: str,
    content: WorkflowContent | Dict[str, Any],
    trigger_input: Optional[Dict[str, Any]] = None,
    deadline_s: Optional[float] = None,
) -> WorkflowExecutionResult:
    """Execute a workflow (convenience function)."""
    resolver = create_workflow_resolver(user_id, workflow_id)
    return resolver.execute(content, trigger_input, deadline_s=deadline_s)


def test_node(
    user_id: str,
    node: WorkflowNode | Dict[str, Any],
    test_input: Optional[Dict[str, Any]] = None,
    node_outputs: Optional[Dict[str, Dict[str, Any]]] = None,
) -> NodeExecutionResult:
    """Execute a single node against a mock context (convenience function)."""
    resolver = create_workflow_resolver(user_id, "test")
    return resolver.test_node(node, test_input, node_outputs)


__all__ = [
    "NodeRunRecord",
    "WorkflowExecutionResult",
    "WorkflowResolver",
    "create_workflow_resolver",
    "execute_workflow",
    "get_env_credentials",
    "test_node",
]
