"""Parse conversation records into an id-keyed message graph and walk it."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from .models import ConversationRecord, MessageNode

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _parse_node(node_id: str, raw: Any) -> MessageNode:
    if not isinstance(raw, dict):
        return MessageNode(id=node_id)

    message = raw.get("message")
    parent = raw.get("parent")
    children = raw.get("children") or []

    return MessageNode(
        id=node_id,
        message=message if isinstance(message, dict) else None,
        parent=parent if isinstance(parent, str) and parent else None,
        children=[c for c in children if isinstance(c, str)] if isinstance(children, list) else [],
        create_time=_as_float(raw.get("create_time")),
    )


def parse_record(conv: dict[str, Any]) -> ConversationRecord:
    """Build a ConversationRecord whose mapping owns every node by id."""
    mapping = conv.get("mapping")
    nodes: dict[str, MessageNode] = {}
    if isinstance(mapping, dict):
        for node_id, raw in mapping.items():
            nodes[str(node_id)] = _parse_node(str(node_id), raw)
    elif mapping is not None:
        logger.warning("Conversation mapping is %s, not an object", type(mapping).__name__)

    title = conv.get("title")
    conv_id = conv.get("id") or conv.get("conversation_id") or ""

    return ConversationRecord(
        id=str(conv_id),
        title=title if isinstance(title, str) and title else "Untitled",
        create_time=_as_float(conv.get("create_time")),
        update_time=_as_float(conv.get("update_time")),
        mapping=nodes,
    )


def root_ids(record: ConversationRecord) -> list[str]:
    """Ids of parentless nodes, in mapping order."""
    return [node_id for node_id, node in record.mapping.items() if node.parent is None]


def iter_message_nodes(record: ConversationRecord) -> Iterator[MessageNode]:
    """Yield every node of a rooted graph exactly once.

    Nodes reachable through ``children`` come first, depth-first from each
    root. Nodes linked only by their ``parent`` field, or whose parent is
    absent from the mapping, follow in mapping order. Children that are not in
    the mapping are ignored. A graph with no root yields nothing.
    """
    roots = root_ids(record)
    if not roots:
        return

    visited: set[str] = set()
    for root_id in roots:
        stack = [root_id]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                logger.warning("Node %s reached twice (cycle or shared child), skipping", node_id)
                continue
            node = record.mapping.get(node_id)
            if node is None:
                continue
            visited.add(node_id)
            yield node
            stack.extend(
                child for child in reversed(node.children) if child in record.mapping
            )

    for node_id, node in record.mapping.items():
        if node_id not in visited:
            visited.add(node_id)
            yield node
