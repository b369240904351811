"""
Node Type Registry - Maps UI node types to provider operations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import WorkflowNode


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeTypeMapping:
    type: str
    provider: str
    operation: str


# Flow nodes pick their operation from data.mode
FLOW_MODES: Dict[str, str] = {
    "iterator": "flow.iterate",
    "endIterator": "flow.endIterate",
    "aggregator": "flow.aggregate",
    "router": "flow.route",
    "filter": "flow.filter",
}

# Node types that start a run
TRIGGER_TYPES = frozenset({"trigger", "webhook"})

# Editor placeholder nodes, never executed
PLACEHOLDER_TYPE = "drop"


def _mappings(*entries: tuple) -> Dict[str, NodeTypeMapping]:
    return {t: NodeTypeMapping(t, provider, operation) for t, provider, operation in entries}


_DEFAULT_NODE_TYPES = _mappings(
    # Triggers
    ("trigger", "webhook", "webhook.trigger"),
    ("webhook", "webhook", "webhook.trigger"),
    # OpenAI
    ("openai", "openai", "chat.completion"),
    ("openaiChat", "openai", "chat.completion"),
    ("openaiImage", "openai", "images.generate"),
    ("openaiEmbedding", "openai", "embeddings.create"),
    # Google
    ("gmail", "google", "gmail.send"),
    ("gmailSend", "google", "gmail.send"),
    ("gmailRead", "google", "gmail.read"),
    ("googleSheets", "google", "sheets.appendRow"),
    ("sheetsAppend", "google", "sheets.appendRow"),
    ("sheetsUpdate", "google", "sheets.updateRow"),
    ("sheetsFind", "google", "sheets.findRow"),
    ("sheetsGet", "google", "sheets.getRows"),
    # Email
    ("email", "email", "email.send"),
    ("emailSend", "email", "email.send"),
    # Transform
    ("jsonParse", "transform", "json.parse"),
    ("jsonStringify", "transform", "json.stringify"),
    ("template", "transform", "text.template"),
    ("filter", "transform", "array.filter"),
    ("map", "transform", "array.map"),
    # Flow control
    ("flow", "flow", "flow.iterate"),
    ("flowIterator", "flow", "flow.iterate"),
    ("flowEndIterator", "flow", "flow.endIterate"),
    ("flowAggregator", "flow", "flow.aggregate"),
    ("flowRouter", "flow", "flow.route"),
    ("flowFilter", "flow", "flow.filter"),
    # HTTP
    ("httpRequest", "webhook", "webhook.request"),
)

NODE_TYPE_REGISTRY: Dict[str, NodeTypeMapping] = dict(_DEFAULT_NODE_TYPES)


def get_node_type_mapping(node_type: str) -> Optional[NodeTypeMapping]:
    return NODE_TYPE_REGISTRY.get(node_type)


def register_node_type(mapping: NodeTypeMapping) -> None:
    """Register (or replace) a custom node type."""
    NODE_TYPE_REGISTRY[mapping.type] = mapping
    logger.debug("Registered node type %s -> %s %s", mapping.type, mapping.provider, mapping.operation)


def reset_node_types() -> None:
    """Restore the built-in mapping (useful for testing)."""
    NODE_TYPE_REGISTRY.clear()
    NODE_TYPE_REGISTRY.update(_DEFAULT_NODE_TYPES)


def list_node_types() -> List[NodeTypeMapping]:
    return sorted(NODE_TYPE_REGISTRY.values(), key=lambda m: m.type)


def resolve_operation(node: WorkflowNode) -> Optional[NodeTypeMapping]:
    """
    Effective provider/operation for a node.

    Flow nodes use ``data.mode``; other nodes may override the default
    operation with ``data.operation`` when their provider supports it.

    Returns:
        The mapping, or None for unknown node types
    """
    mapping = get_node_type_mapping(node.type)
    if mapping is None:
        return None

    if mapping.provider == "flow":
        operation = FLOW_MODES.get(node.mode or "")
        if operation:
            return NodeTypeMapping(mapping.type, mapping.provider, operation)
        return mapping

    override = node.data.get("operation")
    if isinstance(override, str) and override and override != mapping.operation:
        # Import here to avoid circular imports
        from nodepacks import get_provider_adapter

        adapter = get_provider_adapter(mapping.provider)
        if adapter is not None and adapter.supports(override):
            return NodeTypeMapping(
                mapping.type, mapping.provider, adapter.normalize_operation(override)
            )
    return mapping


def is_boundary_node(node: WorkflowNode) -> bool:
    """End-iterator and aggregator nodes close an iteration body."""
    mapping = resolve_operation(node)
    return mapping is not None and mapping.operation in ("flow.endIterate", "flow.aggregate")


__all__ = [
    "FLOW_MODES",
    "NODE_TYPE_REGISTRY",
    "NodeTypeMapping",
    "PLACEHOLDER_TYPE",
    "TRIGGER_TYPES",
    "get_node_type_mapping",
    "is_boundary_node",
    "list_node_types",
    "register_node_type",
    "reset_node_types",
    "resolve_operation",
]
