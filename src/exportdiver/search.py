"""Substring search and relevance scoring over conversation-sets."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, NamedTuple

from .config import DEFAULT_MESSAGE_LIMIT, PREVIEW_LENGTH, SNIPPET_CONTEXT_CHARS
from .models import ConversationRecord, ConversationSummary, SearchMatch, SearchResult, SearchScope
from .parser import iter_message_nodes, parse_record
from .renderer import TRANSCRIPTION

TITLE_SCORE = 10
CONTENT_SCORE = 2
EXACT_MATCH_BONUS = 3
USER_AUTHOR_BONUS = 1


class SearchableMessage(NamedTuple):
    content: str
    author: str
    index: int


def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, dict):
        return ""

    pieces: list[str] = []
    parts = content.get("parts")
    if isinstance(parts, list):
        for part in parts:
            if isinstance(part, str):
                pieces.append(part)
            elif isinstance(part, dict) and part.get("content_type") == TRANSCRIPTION:
                text = part.get("text")
                if isinstance(text, str):
                    pieces.append(text)
    elif isinstance(content.get("text"), str):
        pieces.append(content["text"])
    return " ".join(pieces).strip()


def extract_searchable_text(
    conversation: dict[str, Any] | ConversationRecord,
    message_limit: int = DEFAULT_MESSAGE_LIMIT,
) -> list[SearchableMessage]:
    """Collect non-empty message texts in graph order, up to ``message_limit``."""
    record = conversation if isinstance(conversation, ConversationRecord) else parse_record(conversation)
    texts: list[SearchableMessage] = []

    for node in iter_message_nodes(record):
        if len(texts) >= message_limit:
            break
        if not node.message:
            continue
        text = _message_text(node.message)
        if not text:
            continue
        author = node.message.get("author")
        role = author.get("role") if isinstance(author, dict) else None
        if not isinstance(role, str) or not role:
            role = "unknown"
        texts.append(SearchableMessage(content=text, author=role, index=len(texts)))

    return texts


def _context(text: str, start: int, length: int) -> str:
    lo = max(0, start - SNIPPET_CONTEXT_CHARS)
    hi = min(len(text), start + length + SNIPPET_CONTEXT_CHARS)
    return f"...{text[lo:hi]}..."


def search_in_conversation(
    conversation: dict[str, Any],
    query: str,
    scope: SearchScope = "all",
    case_sensitive: bool = False,
    message_limit: int = DEFAULT_MESSAGE_LIMIT,
) -> tuple[list[SearchMatch], int]:
    """Return (matches, relevance score) for one conversation.

    Title hits score 10. Each message containing the query scores 2, plus 3
    when the whole message equals the query and 1 when the user wrote it.
    """
    if not query or not query.strip():
        return [], 0

    term = query if case_sensitive else query.lower()
    matches: list[SearchMatch] = []
    score = 0

    if scope in ("title", "all"):
        title = conversation.get("title")
        title = title if isinstance(title, str) else ""
        haystack = title if case_sensitive else title.lower()
        if term in haystack:
            matches.append(SearchMatch(type="title", text=title, context=title))
            score += TITLE_SCORE

    if scope in ("content", "all"):
        for message in extract_searchable_text(conversation, message_limit):
            haystack = message.content if case_sensitive else message.content.lower()
            idx = haystack.find(term)
            if idx < 0:
                continue
            matches.append(
                SearchMatch(
                    type="content",
                    text=message.content,
                    context=_context(message.content, idx, len(term)),
                    message_index=message.index,
                    author=message.author,
                )
            )
            score += CONTENT_SCORE
            if haystack == term:
                score += EXACT_MATCH_BONUS
            if message.author == "user":
                score += USER_AUTHOR_BONUS

    return matches, score


def search_conversations(
    conversations: Iterable[tuple[ConversationSummary, dict[str, Any]]],
    query: str,
    scope: SearchScope = "all",
    case_sensitive: bool = False,
) -> list[SearchResult]:
    """Score every conversation against ``query``.

    A blank query returns every conversation unscored, in input order.
    Otherwise only conversations with a match are returned, best score first
    and most recent first among equal scores.
    """
    if not query or not query.strip():
        return [SearchResult(conversation=summary) for summary, _ in conversations]

    results: list[SearchResult] = []
    for summary, conversation in conversations:
        matches, score = search_in_conversation(conversation, query, scope, case_sensitive)
        if matches:
            results.append(SearchResult(conversation=summary, matches=matches, relevance_score=score))

    return sort_by_relevance(results)


def sort_by_relevance(results: list[SearchResult]) -> list[SearchResult]:
    return sorted(
        results,
        key=lambda r: (r.relevance_score, r.conversation.recency),
        reverse=True,
    )


def generate_preview(conversation: dict[str, Any], result: SearchResult | None = None) -> str:
    """Short preview text: the first match's context, else the opening message."""
    if result and result.matches:
        first = result.matches[0]
        if first.type == "title":
            return f"Title match: {first.text}"
        return first.context

    texts = extract_searchable_text(conversation, message_limit=1)
    if texts:
        content = texts[0].content
        if len(content) > PREVIEW_LENGTH:
            content = content[:PREVIEW_LENGTH] + "..."
        return content
    title = conversation.get("title")
    return title if isinstance(title, str) and title else "Untitled chat"


def search_summary(total: int, matched: int, query: str, scope: SearchScope = "all") -> str:
    if not query or not query.strip():
        return f"Found {total} chats"
    scope_text = {"title": "titles", "content": "content"}.get(scope, "titles and content")
    return f'{matched} of {total} chats match "{query}" in {scope_text}'
