"""
Workflow Models - JSON structures for workflow definitions.

These models match the editor's persisted workflow format:
{"nodes": [{id, type, position, data}], "edges": [{id, source, target, sourceHandle?}]}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkflowNodePosition(BaseModel):
    """Node position in the canvas."""
    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """
    A node in a workflow.

    ``data`` holds the node's config as authored, including
    ``{{...}}`` references resolved at run time.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="Node id (unique within workflow)")
    type: str = Field(..., description="UI node type (e.g. 'template', 'flowIterator')")
    position: WorkflowNodePosition = Field(default_factory=WorkflowNodePosition)
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def mode(self) -> Optional[str]:
        """Flow node discriminator (iterator, aggregator, ...)."""
        mode = self.data.get("mode")
        return mode if isinstance(mode, str) else None


class WorkflowEdge(BaseModel):
    """
    Directed edge between two nodes.

    Example: {"id": "e1", "source": "router", "target": "a", "sourceHandle": "vip"}
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field("", description="Edge id")
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    source_handle: Optional[str] = Field(
        None, alias="sourceHandle", description="Output handle (router path)"
    )


class WorkflowContent(BaseModel):
    """
    Complete workflow graph.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Get node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_downstream_nodes(self, node_id: str) -> List[str]:
        """Ids of nodes this node's edges point at."""
        return [edge.target for edge in self.edges if edge.source == node_id]

    def get_upstream_nodes(self, node_id: str) -> List[str]:
        """Ids of nodes with an edge into this node."""
        return [edge.source for edge in self.edges if edge.target == node_id]


def parse_workflow(data: Dict[str, Any] | WorkflowContent) -> WorkflowContent:
    """Parse workflow JSON into WorkflowContent."""
    if isinstance(data, WorkflowContent):
        return data
    return WorkflowContent.model_validate(data)


__all__ = [
    "WorkflowContent",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowNodePosition",
    "parse_workflow",
]
