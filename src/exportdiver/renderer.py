"""Render a conversation's message graph into an ordered, sanitized transcript."""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import markdown
from bs4 import BeautifulSoup, Tag
from bs4.element import CData, Comment, Declaration, Doctype, ProcessingInstruction

from .assets import AssetResolver
from .config import AUDIO_EXTENSIONS, BOT_DISPLAY_NAME, IMAGE_EXTENSIONS, TOOL_DISPLAY_NAME
from .models import ConversationRecord, MessageNode, Transcript, TranscriptMessage, TranscriptPart
from .parser import iter_message_nodes, parse_record

logger = logging.getLogger(__name__)

IMAGE_POINTER = "image_asset_pointer"
AUDIO_POINTER = "audio_asset_pointer"
VIDEO_POINTER = "video_container_asset_pointer"
TRANSCRIPTION = "audio_transcription"
ASSET_CONTENT_TYPES = {IMAGE_POINTER, AUDIO_POINTER, VIDEO_POINTER}

MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]

ALLOWED_TAGS = frozenset({
    "address", "article", "aside", "footer", "header", "h1", "h2", "h3", "h4",
    "h5", "h6", "hgroup", "main", "nav", "section", "blockquote", "dd", "div",
    "dl", "dt", "figcaption", "figure", "hr", "li", "ol", "p", "pre", "ul", "a",
    "abbr", "b", "bdi", "bdo", "br", "cite", "code", "data", "dfn", "em", "i",
    "kbd", "mark", "q", "s", "samp", "small", "span", "strong", "sub", "sup",
    "time", "u", "var", "wbr", "caption", "col", "colgroup", "table", "tbody",
    "td", "tfoot", "th", "thead", "tr", "img", "del", "ins",
})
# Removed together with everything inside them
DROP_WITH_CONTENT = frozenset({
    "script", "style", "textarea", "option", "iframe", "object", "embed",
    "noscript", "template", "svg", "math",
})
ALLOWED_ATTRIBUTES = {
    "a": {"href", "name", "target", "title"},
    "img": {"src", "alt", "title"},
    "abbr": {"title"},
    "code": {"class"},
    "th": {"align"},
    "td": {"align"},
}
URL_ATTRIBUTES = {"href", "src"}
ALLOWED_URL_SCHEMES = {"http", "https", "mailto", "tel"}

_URL_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_NON_MARKUP = (Comment, CData, Declaration, Doctype, ProcessingInstruction)


def _is_safe_url(value: str) -> bool:
    # browsers ignore embedded whitespace and control chars in schemes
    compact = "".join(ch for ch in value if ch > " ")
    match = _URL_SCHEME.match(compact)
    if not match:
        return True
    return match.group(1).lower() in ALLOWED_URL_SCHEMES


def _clean(node: Tag) -> None:
    for child in list(node.children):
        if isinstance(child, _NON_MARKUP):
            child.extract()
            continue
        if not isinstance(child, Tag):
            continue

        name = child.name.lower()
        if name in DROP_WITH_CONTENT:
            child.decompose()
            continue

        _clean(child)

        if name not in ALLOWED_TAGS:
            child.unwrap()
            continue

        allowed = ALLOWED_ATTRIBUTES.get(name, set())
        for attr in list(child.attrs):
            value = child.attrs[attr]
            if attr not in allowed:
                del child.attrs[attr]
            elif attr in URL_ATTRIBUTES and not _is_safe_url(str(value)):
                del child.attrs[attr]


def sanitize_html(raw_html: str) -> str:
    """Reduce HTML to an allow-list of tags and attributes."""
    soup = BeautifulSoup(raw_html, "html.parser")
    _clean(soup)
    return str(soup)


def markdown_to_safe_html(text: str) -> str:
    return sanitize_html(markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS))


def display_author(message: dict[str, Any]) -> tuple[str, str]:
    """Return (display name, role) for a message's author."""
    author = message.get("author")
    if not isinstance(author, dict):
        author = {}
    role = author.get("role")
    if not isinstance(role, str) or not role:
        role = "unknown"
    if role == "assistant":
        return BOT_DISPLAY_NAME, role
    if role == "tool":
        name = author.get("name")
        return (name if isinstance(name, str) and name else TOOL_DISPLAY_NAME), role
    return role, role


def is_hidden_system_message(message: dict[str, Any]) -> bool:
    author = message.get("author")
    if not isinstance(author, dict) or author.get("role") != "system":
        return False
    metadata = message.get("metadata")
    return not (isinstance(metadata, dict) and metadata.get("is_user_system_message"))


def _guess_kind(pointer: str) -> str:
    lowered = pointer.lower()
    if any(ext in lowered for ext in AUDIO_EXTENSIONS):
        return "audio"
    if any(ext in lowered for ext in IMAGE_EXTENSIONS):
        return "image"
    return "file"


def _asset_html(kind: str, url: str, pointer: str) -> str:
    src = html.escape(url, quote=True)
    if kind == "image":
        return f'<img src="{src}" alt="Image" loading="lazy">'
    if kind == "audio":
        return (
            f'<audio controls src="{src}">'
            "<p>Your browser does not support the audio element.</p></audio>"
        )
    if kind == "video":
        return (
            f'<video controls src="{src}">'
            "<p>Your browser does not support the video element.</p></video>"
        )
    return (
        f'<div class="asset-info"><a href="{src}" target="_blank">Download Asset</a>'
        f"<br><small>{html.escape(pointer)}</small></div>"
    )


def missing_asset_html(pointer: str) -> str:
    return (
        '<div class="asset-missing"><strong>Asset Not Available</strong>'
        f"<br><small>Asset file not found: {html.escape(pointer)}</small></div>"
    )


def default_asset_url(path: Path) -> str:
    return path.as_posix()


class TranscriptRenderer:
    """Turns conversation records into Transcripts.

    ``asset_url`` maps a resolved media path to the URL placed in the markup.
    Without a resolver every asset renders as a missing-asset block.
    """

    def __init__(
        self,
        resolver: AssetResolver | None = None,
        asset_url: Callable[[Path], str] = default_asset_url,
    ):
        self.resolver = resolver
        self.asset_url = asset_url

    def render_asset(self, asset: dict[str, Any]) -> TranscriptPart:
        pointer = asset.get("asset_pointer") or asset.get("pointer") or ""
        if not isinstance(pointer, str):
            pointer = ""
        content_type = asset.get("content_type") or ""

        path = self.resolver.resolve(pointer) if self.resolver and pointer else None
        if path is None:
            logger.debug("Asset URL not found for: %s", pointer)
            return TranscriptPart(kind="missing", html=missing_asset_html(pointer), pointer=pointer)

        if content_type == IMAGE_POINTER:
            kind = "image"
        elif content_type == AUDIO_POINTER:
            kind = "audio"
        elif content_type == VIDEO_POINTER:
            kind = "video"
        else:
            kind = _guess_kind(pointer)

        url = self.asset_url(path)
        return TranscriptPart(kind=kind, html=_asset_html(kind, url, pointer), pointer=pointer, path=url)

    def render_part(self, part: Any) -> list[TranscriptPart]:
        if isinstance(part, str):
            if not part:
                return []
            return [TranscriptPart(kind="html", html=markdown_to_safe_html(part), raw=part)]

        if not isinstance(part, dict):
            return []

        content_type = part.get("content_type")
        if content_type == TRANSCRIPTION:
            text = part.get("text")
            return [TranscriptPart(kind="transcript", text=text if isinstance(text, str) else "")]
        if content_type in ASSET_CONTENT_TYPES:
            return [self.render_asset(part)]

        # Real-time voice/video containers nest their assets
        rendered: list[TranscriptPart] = []
        for key in (AUDIO_POINTER, VIDEO_POINTER):
            nested = part.get(key)
            if isinstance(nested, dict):
                rendered.append(self.render_asset(nested))
        frames = part.get("frames_asset_pointers")
        if isinstance(frames, list):
            rendered.extend(self.render_asset(f) for f in frames if isinstance(f, dict))
        return rendered

    def render_message(self, node: MessageNode) -> TranscriptMessage | None:
        message = node.message
        if not message:
            return None
        content = message.get("content")
        if not isinstance(content, dict):
            return None
        parts = content.get("parts")
        if not isinstance(parts, list) or not parts:
            return None
        if is_hidden_system_message(message):
            return None

        rendered: list[TranscriptPart] = []
        for part in parts:
            rendered.extend(self.render_part(part))
        if not rendered:
            return None

        author, role = display_author(message)
        created = message.get("create_time")
        if isinstance(created, bool) or not isinstance(created, (int, float)) or not created:
            created = node.create_time or 0
        return TranscriptMessage(author=author, role=role, created_at=float(created), parts=rendered)

    def render(self, conversation: dict[str, Any] | ConversationRecord, conversation_id: str = "") -> Transcript:
        record = conversation if isinstance(conversation, ConversationRecord) else parse_record(conversation)

        messages = []
        for node in iter_message_nodes(record):
            rendered = self.render_message(node)
            if rendered is not None:
                messages.append(rendered)
        messages.sort(key=lambda m: m.created_at)

        return Transcript(
            id=conversation_id or record.id,
            title=record.title,
            create_time=record.create_time,
            update_time=record.update_time,
            messages=messages,
        )
