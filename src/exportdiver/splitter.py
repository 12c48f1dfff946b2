"""Split the single conversations.json document into one file per conversation."""

from __future__ import annotations

import errno
import json
import logging
import math
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from .config import TITLE_MAX_LENGTH
from .errors import ConversationDocumentNotArray
from .models import SplitResult

logger = logging.getLogger(__name__)

CollisionPolicy = Literal["skip", "overwrite"]

# Failures that mean the disk or filesystem is unusable, not that one record is bad
_RESOURCE_ERRNOS = {errno.ENOSPC, errno.EDQUOT, errno.EROFS, errno.EACCES, errno.EPERM}

_UNSAFE_TITLE_CHARS = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")


def sanitize_title(raw_title: Any) -> str:
    """Turn a conversation title into a filename-safe slug."""
    title = raw_title if isinstance(raw_title, str) else ""
    cleaned = _UNSAFE_TITLE_CHARS.sub("", title).strip()
    slug = _WHITESPACE.sub("_", cleaned)[:TITLE_MAX_LENGTH]
    return slug or "untitled"


def _to_number(value: Any) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def extract_timestamp(record: Any) -> float:
    """update_time if present, else create_time, else 0."""
    if not isinstance(record, dict):
        return 0.0
    if record.get("update_time") is not None:
        return _to_number(record["update_time"])
    if record.get("create_time") is not None:
        return _to_number(record["create_time"])
    return 0.0


def format_date_stamp(ts: float) -> str:
    try:
        dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        dt = datetime.fromtimestamp(0, tz=timezone.utc)
    return dt.strftime("%Y.%m.%d")


def conversation_filename(record: dict[str, Any]) -> str:
    date = format_date_stamp(extract_timestamp(record))
    return f"{date}_{sanitize_title(record.get('title'))}.json"


def load_conversation_document(path: Path) -> list[Any]:
    """Read conversations.json and require a top-level array."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConversationDocumentNotArray(f"conversations.json is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ConversationDocumentNotArray()
    return data


def split_conversations(
    records: list[Any],
    output_dir: Path,
    on_collision: CollisionPolicy = "skip",
) -> SplitResult:
    """Write each record to ``output_dir`` as ``{YYYY.MM.DD}_{slug}.json``.

    Records are handled newest first. A bad record is logged and counted in
    ``errors`` without stopping the batch; disk-level failures propagate.
    """
    if on_collision not in ("skip", "overwrite"):
        raise ValueError(f"Unknown collision policy: {on_collision}")

    output_dir.mkdir(parents=True, exist_ok=True)
    result = SplitResult(total=len(records))
    ordered = sorted(records, key=extract_timestamp, reverse=True)

    for record in ordered:
        try:
            if not isinstance(record, dict):
                raise TypeError(f"record is {type(record).__name__}, not an object")

            filename = conversation_filename(record)
            filepath = output_dir / filename

            if on_collision == "skip" and filepath.exists():
                logger.debug("Skipping existing file: %s", filename)
                result.skipped += 1
                continue

            payload = json.dumps(record, indent=2, ensure_ascii=False)
            filepath.write_text(payload, encoding="utf-8")
            result.processed += 1
            result.written.append(filename)
        except OSError as e:
            if e.errno in _RESOURCE_ERRNOS:
                raise
            logger.warning("Failed to write conversation", exc_info=True)
            result.errors += 1
        except (TypeError, ValueError):
            logger.warning("Failed to serialize conversation", exc_info=True)
            result.errors += 1

    logger.info(
        "Split completed: %d of %d processed, %d skipped, %d errors",
        result.processed,
        result.total,
        result.skipped,
        result.errors,
    )
    return result
