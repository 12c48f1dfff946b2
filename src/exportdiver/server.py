"""FastMCP server with read-only conversation-set tools."""

from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from .errors import ExportDiverError
from .exporter import format_timestamp
from .library import ConversationLibrary

# Logging to stderr only, stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

mcp = FastMCP(
    "exportdiver",
    instructions=(
        "Browse and search the user's imported ChatGPT conversation-sets. "
        "Use list_sets to see which exports have been imported. "
        "Use search_conversations to find past discussions in a set. "
        "Use get_conversation to read a full conversation transcript. "
        "Use list_conversations to browse a set by date."
    ),
)

# Singleton library, reused across tool calls
_library: ConversationLibrary | None = None


def set_library(library: ConversationLibrary | None) -> None:
    """Serve tool calls from ``library``; None builds a default one lazily."""
    global _library
    _library = library


def _get_library() -> ConversationLibrary:
    global _library
    if _library is None:
        _library = ConversationLibrary()
    return _library


@mcp.tool()
def list_sets() -> str:
    """List the imported ChatGPT conversation-sets."""
    sets = _get_library().list_sets()
    if not sets:
        return (
            "No conversation-sets found. Please import your data first:\n"
            "  exportdiver import ~/Downloads/your-chatgpt-export.zip"
        )

    lines = [f"{len(sets)} conversation-sets:\n"]
    for s in sets:
        lines.append(f"- **{s.name}**: {s.conversation_count:,} conversations, {s.media_count:,} media files")
    return "\n".join(lines)


@mcp.tool()
def list_conversations(set_id: str, limit: int = 20, offset: int = 0) -> str:
    """Browse the conversations of a set, newest first.

    Args:
        set_id: Conversation-set name (from list_sets)
        limit: Maximum results (default 20)
        offset: Skip this many results (for pagination)
    """
    try:
        conversations = _get_library().list_conversations(set_id)
    except ExportDiverError as e:
        return str(e)

    page = conversations[offset : offset + limit]
    if not page:
        return "No conversations found."

    lines = [f"Conversations (showing {offset + 1}–{offset + len(page)} of {len(conversations)}):\n"]
    for i, c in enumerate(page, offset + 1):
        lines.append(f"{i}. **{c.title}** ({c.date})")
        lines.append(f"   ID: `{c.id}`")

    if offset + limit < len(conversations):
        lines.append(f"\nMore available — use offset={offset + limit} to see the next page.")
    return "\n".join(lines)


@mcp.tool()
def get_conversation(set_id: str, conversation_id: str) -> str:
    """Retrieve a full conversation transcript.

    Args:
        set_id: Conversation-set name
        conversation_id: Conversation file name (from list or search results)
    """
    try:
        transcript = _get_library().get_conversation(set_id, conversation_id)
    except ExportDiverError as e:
        return str(e)

    lines = [
        f"# {transcript.title}",
        f"Date: {format_timestamp(transcript.create_time)}",
        f"Messages: {len(transcript.messages)}",
        "",
        "---",
        "",
    ]

    char_count = 0
    max_chars = 50_000

    for msg in transcript.messages:
        pieces = []
        for part in msg.parts:
            if part.kind == "html":
                pieces.append(part.raw or "")
            elif part.kind == "transcript":
                pieces.append(f"[Transcript] {part.text}")
            elif part.kind == "missing":
                pieces.append(f"[Asset not available: {part.pointer}]")
            else:
                pieces.append(f"[{part.kind.capitalize()}: {part.path}]")
        content = "\n".join(pieces)

        remaining_budget = max_chars - char_count
        if remaining_budget <= 0 or len(content) > remaining_budget:
            if remaining_budget > 0:
                lines.append(f"**{msg.author}**:")
                lines.append(content[:remaining_budget])
            lines.append(
                f"\n... [Truncated — conversation exceeds {max_chars:,} chars. "
                f"Total: {len(transcript.messages)} messages]"
            )
            break

        char_count += len(content)
        lines.append(f"**{msg.author}**:")
        lines.append(content)
        lines.append("")

    return "\n".join(lines)


@mcp.tool()
def search_conversations(set_id: str, query: str, scope: str = "all", limit: int = 10) -> str:
    """Search a conversation-set by title and message content.

    Args:
        set_id: Conversation-set name
        query: Text to look for (case-insensitive substring)
        scope: "title", "content" or "all" (default)
        limit: Maximum number of results (default 10)
    """
    if scope not in ("title", "content", "all"):
        return f"Unknown scope: {scope}. Use title, content or all."
    try:
        results = _get_library().search_conversations(set_id, query, scope)
    except ExportDiverError as e:
        return str(e)

    if not results:
        return f"No conversations found matching '{query}'."

    ranked = results[:limit]
    lines = [f"Found {len(results)} conversations matching '{query}':\n"]
    for i, r in enumerate(ranked, 1):
        lines.append(f"{i}. **{r.conversation.title}**")
        lines.append(f"   ID: `{r.conversation.id}`")
        lines.append(f"   Date: {r.conversation.date} | Relevance: {r.relevance_score}")
        content = next((m for m in r.matches if m.type == "content"), None)
        if content:
            lines.append(f"   Preview: {content.context.replace(chr(10), ' ')[:150]}")
        lines.append("")

    lines.append("Use get_conversation(set_id, conversation_id) to read the full transcript.")
    return "\n".join(lines)
