"""Classify extracted archive entries and relocate them into a conversation-set."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath

from .config import (
    AUDIO_EXTENSIONS,
    COMPANION_HTML,
    CONVERSATION_DOCUMENT,
    IMAGE_EXTENSIONS,
    MEDIA_DIR_PREFIXES,
    MEDIA_PREFIXES,
    VIDEO_EXTENSIONS,
)
from .errors import MissingConversationDocument, UnsafeEntryPath
from .models import ArchiveListing, DetectedStructure, RelocatedFile
from .validator import is_safe_entry_path

logger = logging.getLogger(__name__)

_MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | AUDIO_EXTENSIONS | VIDEO_EXTENSIONS
_NUL_SCAN_CHUNK = 1024 * 1024


def find_wrapper(paths: list[str]) -> str | None:
    """Return the wrapping folder shared by every file path, if any.

    A single distinct top-level segment is a wrapper. Stripping repeats while
    the remaining paths still share exactly one segment and every file sits
    below it, so ``a/b/x`` and ``a/b/y`` yield ``a/b``.
    """
    split = [p.split("/") for p in paths if p]
    if not split:
        return None

    prefix: list[str] = []
    while True:
        depth = len(prefix)
        if any(len(parts) <= depth + 1 for parts in split):
            break
        heads = {parts[depth] for parts in split}
        if len(heads) != 1:
            break
        prefix.append(heads.pop())

    return "/".join(prefix) or None


def strip_wrapper(path: str, wrapper: str | None) -> str:
    if wrapper and path.startswith(wrapper + "/"):
        return path[len(wrapper) + 1 :]
    return path


def is_media_path(relative_path: str) -> bool:
    name = PurePosixPath(relative_path).name
    if name.startswith(MEDIA_PREFIXES):
        return True
    if relative_path.startswith(MEDIA_DIR_PREFIXES):
        return True
    return PurePosixPath(name).suffix.lower() in _MEDIA_EXTENSIONS


def _is_text_document(path: Path) -> bool:
    """Regular file with no NUL anywhere (binary-content guard)."""
    if path.is_symlink() or not path.is_file():
        return False
    with open(path, "rb") as f:
        while True:
            chunk = f.read(_NUL_SCAN_CHUNK)
            if not chunk:
                return True
            if b"\x00" in chunk:
                return False


def detect_structure(listing: ArchiveListing, workspace: Path) -> DetectedStructure:
    """Locate the conversation document and sort the remaining entries.

    Raises MissingConversationDocument if no usable conversations.json exists.
    """
    files = [e.relative_path for e in listing.files]
    wrapper = find_wrapper(files)
    if wrapper:
        logger.debug("Wrapping folder detected: %s", wrapper)

    # An exact basename beats suffix matches such as shared_conversations.json
    candidates = [p for p in files if p.endswith(CONVERSATION_DOCUMENT)]
    candidates.sort(key=lambda p: PurePosixPath(p).name != CONVERSATION_DOCUMENT)

    conversation_document: str | None = None
    for path in candidates:
        if _is_text_document(workspace / path):
            conversation_document = path
            break
        logger.warning("Ignoring %s candidate that is not a text file", CONVERSATION_DOCUMENT)

    if conversation_document is None:
        raise MissingConversationDocument()

    companion_html: str | None = None
    media: list[RelocatedFile] = []
    other: list[RelocatedFile] = []

    for path in files:
        if path == conversation_document:
            continue
        relative = strip_wrapper(path, wrapper)
        if PurePosixPath(relative).name == COMPANION_HTML:
            if companion_html is None:
                companion_html = path
            continue
        item = RelocatedFile(source=path, target=relative)
        if is_media_path(relative):
            media.append(item)
        else:
            other.append(item)

    logger.info(
        "Structure detected: %d media files, %d other files, companion html %s",
        len(media),
        len(other),
        "present" if companion_html else "absent",
    )
    return DetectedStructure(
        wrapper=wrapper,
        conversation_document=conversation_document,
        companion_html=companion_html,
        media=media,
        other=other,
    )


def relocate(items: list[RelocatedFile], workspace: Path, destination: Path) -> int:
    """Move extracted files from the workspace to ``destination``.

    Returns the number of files moved.
    """
    root = destination.resolve()
    moved = 0
    for item in items:
        if not is_safe_entry_path(item.target):
            raise UnsafeEntryPath(f"unsafe relocated path {item.target!r}")
        target = (root / item.target).resolve()
        if root not in target.parents:
            raise UnsafeEntryPath(f"relocated path escapes destination: {item.target!r}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(workspace / item.source), str(target))
        moved += 1
    return moved
