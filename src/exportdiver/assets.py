"""Asset-pointer resolution against a conversation-set's media tree.

Exporters append random suffixes to media filenames, so every lookup is a
filename *prefix* search rather than an exact match.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from collections import OrderedDict
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

from .config import (
    FALLBACK_IMAGE_EXTENSIONS,
    FILE_SERVICE_PREFIX,
    LEGACY_MEDIA_SUBDIR,
    SEARCH_CACHE_SIZE,
    SEDIMENT_PREFIX,
    SEDIMENT_STRIP_EXTENSIONS,
)

logger = logging.getLogger(__name__)

_ASSETS_JSON_ASSIGNMENT = re.compile(r"(?:var|let|const)\s+assetsJson\s*=\s*")


def normalize_pointer(pointer: str) -> str:
    """Strip the scheme prefix from an asset pointer to get its lookup key.

    Sediment files are stored with a generic ``.dat`` extension whatever their
    real type, so a known media extension is dropped from those keys too.
    """
    if pointer.startswith(FILE_SERVICE_PREFIX):
        return pointer[len(FILE_SERVICE_PREFIX) :]
    if pointer.startswith(SEDIMENT_PREFIX):
        key = pointer[len(SEDIMENT_PREFIX) :]
        lowered = key.lower()
        for ext in SEDIMENT_STRIP_EXTENSIONS:
            if lowered.endswith(ext):
                return key[: -len(ext)]
        return key
    return pointer


def candidate_names(key: str) -> list[str]:
    return [key] + [key + ext for ext in FALLBACK_IMAGE_EXTENSIONS]


def find_files_by_prefix(root: Path, prefix: str) -> Iterator[Path]:
    """Yield files under ``root`` whose name starts with ``prefix``, in sorted walk order."""
    if not prefix:
        return

    def _on_error(err: OSError) -> None:
        logger.debug("Directory not accessible during file search: %s", err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        for name in sorted(filenames):
            if name.startswith(prefix):
                path = Path(dirpath) / name
                if path.is_file():
                    yield path


class FileSearchCache:
    """Bounded cache of recursive prefix searches keyed by ``(root, filename)``.

    Oldest-inserted entries are evicted first once ``max_size`` is reached.
    Safe to share between threads.
    """

    def __init__(self, max_size: int = SEARCH_CACHE_SIZE):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.walks = 0
        self._entries: OrderedDict[tuple[str, str], tuple[Path, ...]] = OrderedDict()
        self._lock = threading.Lock()

    def find(self, root: Path, filename: str) -> list[Path]:
        if not filename:
            return []

        key = (str(root), filename)
        with self._lock:
            cached = self._entries.get(key)
        if cached is not None:
            return list(cached)

        results = tuple(find_files_by_prefix(root, filename))

        with self._lock:
            self.walks += 1
            if key not in self._entries:
                while len(self._entries) >= self.max_size:
                    self._entries.popitem(last=False)
                self._entries[key] = results
        return list(results)

    def invalidate(self, root: Path) -> None:
        """Drop every entry whose search root lies at or under ``root``."""
        prefix = str(root)
        with self._lock:
            stale = [
                k for k in self._entries
                if k[0] == prefix or k[0].startswith(prefix + os.sep)
            ]
            for k in stale:
                del self._entries[k]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def parse_assets_json(html: str) -> dict[str, Any] | None:
    """Recover the ``assetsJson`` object literal embedded in a chat.html page."""
    match = _ASSETS_JSON_ASSIGNMENT.search(html)
    if not match or html[match.end() : match.end() + 1] != "{":
        return None
    try:
        mapping, _ = json.JSONDecoder().raw_decode(html, match.end())
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse assetsJson from chat.html: %s", e)
        return None
    return mapping if isinstance(mapping, dict) else None


def _read_index_file(index_path: Path) -> dict[str, Any] | None:
    try:
        with open(index_path, encoding="utf-8") as f:
            mapping = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Error reading asset index: %s", e)
        return None
    if not isinstance(mapping, dict):
        logger.warning("Asset index is not a JSON object, ignoring it")
        return None
    return mapping


def _read_html_index(html_path: Path) -> dict[str, Any] | None:
    try:
        html = html_path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Error reading chat.html for asset index: %s", e)
        return None
    return parse_assets_json(html)


def load_asset_index(index_path: Path, html_path: Path | None = None) -> dict[str, Any]:
    """Load a set's asset index from assets.json, else from chat.html.

    Returns an empty mapping when neither source yields one.
    """
    mapping = _read_index_file(index_path)
    if mapping is not None:
        logger.debug("Loaded asset index with %d assets", len(mapping))
        return mapping

    if html_path is not None:
        mapping = _read_html_index(html_path)
        if mapping is not None:
            logger.debug("Loaded asset index from chat.html with %d assets", len(mapping))
            return mapping

    return {}


def extract_assets_json(html_path: Path, index_path: Path) -> int:
    """Persist the assetsJson mapping from chat.html as assets.json.

    Returns the number of assets written, 0 when none were found.
    """
    mapping = _read_html_index(html_path)
    if not mapping:
        logger.debug("No assetsJson found in chat.html")
        return 0

    index_path.parent.mkdir(parents=True, exist_ok=True)
    index_path.write_text(json.dumps(mapping, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Extracted asset index with %d assets", len(mapping))
    return len(mapping)


class AssetResolver:
    """Map asset pointers to files under one media root."""

    def __init__(
        self,
        media_root: Path,
        index: Mapping[str, Any] | None = None,
        cache: FileSearchCache | None = None,
    ):
        self.media_root = media_root
        self.index = index or {}
        self.cache = cache or FileSearchCache()

    def _mapped_filename(self, pointer: str) -> str:
        mapped = self.index.get(pointer)
        if isinstance(mapped, dict):
            mapped = mapped.get("name")
        if not isinstance(mapped, str):
            return ""
        # Index values occasionally carry a directory; names are matched on their own
        return mapped.rsplit("/", 1)[-1]

    def resolve(self, pointer: str) -> Path | None:
        """Return the media file for ``pointer``, or None when it cannot be found."""
        if not pointer or not isinstance(pointer, str):
            return None

        key = normalize_pointer(pointer)

        filename = self._mapped_filename(pointer)
        if filename:
            found = self.cache.find(self.media_root, filename)
            if found:
                logger.debug("Found mapped asset: %s -> %s", pointer, filename)
                return found[0]

        search_dirs = (self.media_root, self.media_root / LEGACY_MEDIA_SUBDIR)
        for search_dir in search_dirs:
            for name in candidate_names(key):
                found = self.cache.find(search_dir, name)
                if found:
                    logger.debug("Found asset by pattern search: %s -> %s", pointer, name)
                    return found[0]

        found = self.cache.find(self.media_root, key)
        if found:
            logger.debug("Found asset by filename search: %s", key)
            return found[0]

        logger.debug("Asset not found: %s", pointer)
        return None
