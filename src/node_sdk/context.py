"""
Execution Context - Per-run state threaded through every node execution.

Also defines the node result contract shared by adapters and the
resolver: NodeExecutionResult plus the NodeSignal variant adapters use
to hand control-flow decisions (iteration, filter stop, aggregation)
back to the scheduler.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .credentials import CredentialManager, Credentials
from .errors import ExecutionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalKind(str, Enum):
    """What the scheduler should do with a node result."""
    VALUE = "value"
    BEGIN_ITERATION = "begin_iteration"
    FILTER_STOPPED = "filter_stopped"
    AGGREGATION_PENDING = "aggregation_pending"
    AGGREGATION_COMPLETE = "aggregation_complete"


@dataclass(frozen=True)
class IterationPlan:
    """Items an iterator node asks the scheduler to loop over."""
    items: List[Any]
    item_variable: str = "item"
    index_variable: str = "index"

    @property
    def total_items(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class NodeSignal:
    """
    Tagged control-flow signal attached to every node result.

    Build with the classmethods rather than the constructor so each
    kind carries its payload.
    """
    kind: SignalKind = SignalKind.VALUE
    plan: Optional[IterationPlan] = None
    data: Any = None
    pending_count: int = 0

    @classmethod
    def value(cls) -> "NodeSignal":
        return cls(SignalKind.VALUE)

    @classmethod
    def begin_iteration(cls, plan: IterationPlan) -> "NodeSignal":
        return cls(SignalKind.BEGIN_ITERATION, plan=plan)

    @classmethod
    def filter_stopped(cls, data: Dict[str, Any]) -> "NodeSignal":
        return cls(SignalKind.FILTER_STOPPED, data=data)

    @classmethod
    def aggregation_pending(cls, count: int) -> "NodeSignal":
        return cls(SignalKind.AGGREGATION_PENDING, pending_count=count)

    @classmethod
    def aggregation_complete(cls, data: Any) -> "NodeSignal":
        return cls(SignalKind.AGGREGATION_COMPLETE, data=data)


@dataclass
class FlowOutcome:
    """Adapter return value carrying a signal alongside the output map."""
    output: Dict[str, Any]
    signal: NodeSignal


@dataclass
class ExecutionMetadata:
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: float = 0
    retry_count: int = 0
    provider: Optional[str] = None
    operation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "duration": round(self.duration_ms, 3),
            "retryCount": self.retry_count,
            "provider": self.provider,
            "operation": self.operation,
        }


@dataclass
class NodeExecutionResult:
    """
    Result of executing one node once (one per item inside an iteration).
    """
    success: bool
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ExecutionError] = None
    metadata: ExecutionMetadata = field(default_factory=ExecutionMetadata)
    signal: NodeSignal = field(default_factory=NodeSignal.value)
    node_id: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_error(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeId": self.node_id,
            "success": self.success,
            "output": self.output,
            "metadata": self.metadata.to_dict(),
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.signal.kind != SignalKind.VALUE:
            data["signal"] = self.signal.kind.value
        return data


@dataclass
class FlowState:
    """Transient iteration state visible to nodes inside a loop body."""
    item: Any
    index: int
    total_items: int

    @property
    def is_last_item(self) -> bool:
        return self.index == self.total_items - 1


@dataclass
class ExecutionContext:
    """
    Mutable state for one workflow run.

    ``node_outputs`` maps node id to its latest result (last write wins
    inside iterations) and ``executed_nodes`` keeps execution order, so
    ``previous`` is always the most recently executed node.
    """
    workflow_id: str
    user_id: str
    execution_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trigger_input: Dict[str, Any] = field(default_factory=dict)
    node_outputs: Dict[str, NodeExecutionResult] = field(default_factory=dict)
    executed_nodes: List[str] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    credentials: Dict[str, Credentials] = field(default_factory=dict)
    # Where refreshed credentials are written back (global manager when None)
    credential_manager: Optional[CredentialManager] = None
    aggregation_buffers: Dict[str, List[Any]] = field(default_factory=dict)
    flow_state: Optional[FlowState] = None
    # Node currently being dispatched (set by the resolver)
    current_node_id: Optional[str] = None
    deadline: Optional[float] = None  # time.monotonic() value

    def record_result(self, node_id: str, result: NodeExecutionResult) -> None:
        self.node_outputs[node_id] = result
        self.executed_nodes.append(node_id)

    @property
    def previous_result(self) -> Optional[NodeExecutionResult]:
        if not self.executed_nodes:
            return None
        return self.node_outputs.get(self.executed_nodes[-1])

    def previous_output(self) -> Any:
        """Output of the last executed node, or the trigger input before any."""
        result = self.previous_result
        if result is None:
            return self.trigger_input
        return result.output

    def time_remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def is_past_deadline(self) -> bool:
        remaining = self.time_remaining()
        return remaining is not None and remaining <= 0


__all__ = [
    "ExecutionContext",
    "ExecutionMetadata",
    "FlowOutcome",
    "FlowState",
    "IterationPlan",
    "NodeExecutionResult",
    "NodeSignal",
    "SignalKind",
    "utcnow",
]
