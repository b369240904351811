"""
Execution Graph - Linear execution order over a workflow's nodes and edges.

The engine is a sequential interpreter: the graph is flattened into one
BFS order starting from the trigger nodes, and iteration bodies are
carved out of that order as contiguous sub-sequences.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from .models import WorkflowContent, WorkflowEdge, WorkflowNode
from .registry import PLACEHOLDER_TYPE, TRIGGER_TYPES, is_boundary_node


logger = logging.getLogger(__name__)


def build_edge_map(edges: Iterable[WorkflowEdge]) -> Dict[str, List[str]]:
    """source id -> target ids, in edge order."""
    edge_map: Dict[str, List[str]] = {}
    for edge in edges:
        edge_map.setdefault(edge.source, []).append(edge.target)
    return edge_map


def find_start_nodes(content: WorkflowContent) -> List[WorkflowNode]:
    """
    Trigger nodes; else nodes without incoming edges; else the first
    non-placeholder node.
    """
    triggers = [n for n in content.nodes if n.type in TRIGGER_TYPES]
    if triggers:
        return triggers

    has_incoming = {edge.target for edge in content.edges}
    starts = [
        n for n in content.nodes
        if n.id not in has_incoming and n.type != PLACEHOLDER_TYPE
    ]
    if not starts:
        first = next((n for n in content.nodes if n.type != PLACEHOLDER_TYPE), None)
        if first is not None:
            starts.append(first)
    return starts


def build_execution_order(content: WorkflowContent) -> List[WorkflowNode]:
    """
    BFS from the start nodes; placeholder nodes are traversed but never
    scheduled. Nodes unreachable from a start node are not executed.
    """
    nodes = {node.id: node for node in content.nodes}
    edge_map = build_edge_map(content.edges)

    order: List[WorkflowNode] = []
    visited: Set[str] = set()
    queue = deque(node.id for node in find_start_nodes(content))

    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)

        node = nodes.get(node_id)
        if node is not None and node.type != PLACEHOLDER_TYPE:
            order.append(node)

        for target in edge_map.get(node_id, []):
            if target not in visited:
                queue.append(target)

    return order


class ExecutionGraph:
    """
    A workflow compiled for sequential execution.

    Contains:
    - The linear execution order
    - Edge lookups in both directions
    - Iteration body discovery

    SYNC-WORKER SAFE: No async operations.
    """

    def __init__(self, content: WorkflowContent):
        self.content = content
        self._edge_map = build_edge_map(content.edges)
        self._order = build_execution_order(content)
        self._position = {node.id: i for i, node in enumerate(self._order)}

    @property
    def execution_order(self) -> List[WorkflowNode]:
        return list(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def position(self, node_id: str) -> Optional[int]:
        return self._position.get(node_id)

    def downstream(self, node_id: str) -> List[str]:
        return list(self._edge_map.get(node_id, []))

    def outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        return [edge for edge in self.content.edges if edge.source == node_id]

    def incoming_edges(self, node_id: str) -> List[WorkflowEdge]:
        return [edge for edge in self.content.edges if edge.target == node_id]

    def get_nodes_until_aggregator(self, iterator_id: str) -> List[WorkflowNode]:
        """
        The iteration body of an iterator node.

        BFS over the iterator's downstream nodes, including the first
        end-iterator/aggregator reached on each path but not expanding
        past it. Returned in execution order; nodes outside the order
        are ignored.
        """
        body: List[WorkflowNode] = []
        visited: Set[str] = {iterator_id}
        queue = deque(self.downstream(iterator_id))

        while queue:
            node_id = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)

            index = self._position.get(node_id)
            if index is None:
                continue
            node = self._order[index]
            body.append(node)

            if is_boundary_node(node):
                continue

            for target in self.downstream(node_id):
                if target not in visited:
                    queue.append(target)

        body.sort(key=lambda n: self._position[n.id])
        return body


__all__ = [
    "ExecutionGraph",
    "build_edge_map",
    "build_execution_order",
    "find_start_nodes",
]
