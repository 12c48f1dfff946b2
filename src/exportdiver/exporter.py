"""Export rendered transcripts as Markdown, plain text or standalone HTML."""

from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Literal

from .assets import normalize_pointer
from .models import Transcript, TranscriptMessage, TranscriptPart

ExportFormat = Literal["md", "txt", "html"]
EXPORT_FORMATS: tuple[str, ...] = ("md", "txt", "html")

_ASSET_LABELS = {"image": "Image", "audio": "Audio", "video": "Video", "file": "File"}


def format_timestamp(ts: float | None) -> str:
    if not ts:
        return "Unknown date"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _asset_name(part: TranscriptPart) -> str:
    if part.pointer:
        return normalize_pointer(part.pointer)
    return (part.path or "").rsplit("/", 1)[-1]


def _markdown_part(part: TranscriptPart) -> str:
    if part.kind == "html":
        return part.raw or ""
    if part.kind == "transcript":
        return f"> {part.text}"
    if part.kind == "missing":
        return f"*Asset not available: {part.pointer}*"
    name = _asset_name(part)
    if part.kind == "image":
        return f"![{name}]({part.path})"
    return f"[{_ASSET_LABELS[part.kind]}: {name}]({part.path})"


def _text_part(part: TranscriptPart) -> str:
    if part.kind == "html":
        return part.raw or ""
    if part.kind == "transcript":
        return f"[Transcript] {part.text}"
    if part.kind == "missing":
        return f"[Asset not available: {part.pointer}]"
    return f"[{_ASSET_LABELS[part.kind]}: {_asset_name(part)} -> {part.path}]"


def _header(transcript: Transcript) -> list[str]:
    return [
        f"Date: {format_timestamp(transcript.create_time)}",
        f"Messages: {len(transcript.messages)}",
    ]


def to_markdown(transcript: Transcript) -> str:
    lines = [f"# {transcript.title}", ""]
    lines.extend(f"{line}  " for line in _header(transcript))
    for message in transcript.messages:
        lines.extend(["", "---", "", f"**{message.author}**:", ""])
        lines.append("\n\n".join(_markdown_part(p) for p in message.parts))
    return "\n".join(lines) + "\n"


def to_text(transcript: Transcript) -> str:
    lines = [transcript.title, "=" * len(transcript.title)]
    lines.extend(_header(transcript))
    for message in transcript.messages:
        lines.extend(["", f"[{message.author}]"])
        lines.extend(_text_part(p) for p in message.parts)
    return "\n".join(lines) + "\n"


def _html_message(message: TranscriptMessage) -> str:
    body = []
    for part in message.parts:
        if part.kind == "transcript":
            body.append(f'<p class="transcript">{html.escape(part.text or "")}</p>')
        else:
            body.append(part.html or "")
    return (
        f'<div class="message {html.escape(message.role, quote=True)}">'
        f'<div class="author">{html.escape(message.author)}</div>'
        f'{"".join(body)}</div>'
    )


def to_html(transcript: Transcript) -> str:
    """Standalone page; part markup is already sanitized by the renderer."""
    title = html.escape(transcript.title)
    header = "".join(f"<p>{html.escape(line)}</p>" for line in _header(transcript))
    messages = "\n".join(_html_message(m) for m in transcript.messages)
    return (
        "<!DOCTYPE html>\n"
        f'<html><head><meta charset="utf-8"><title>{title}</title></head>\n'
        f"<body><h1>{title}</h1>{header}\n{messages}\n</body></html>\n"
    )


def export_transcript(transcript: Transcript, fmt: ExportFormat = "md") -> str:
    if fmt == "md":
        return to_markdown(transcript)
    if fmt == "txt":
        return to_text(transcript)
    if fmt == "html":
        return to_html(transcript)
    raise ValueError(f"Unknown export format: {fmt}")
