"""Entry points for ingesting, browsing and searching conversation-sets."""

from __future__ import annotations

import json
import logging
import shutil
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from .assets import AssetResolver, FileSearchCache, load_asset_index
from .config import REGISTRY_PATH
from .errors import ConversationNotFoundError, SetExistsError, SetNotFoundError
from .exporter import ExportFormat, export_transcript
from .importer import IngestPipeline, ProgressSink
from .models import (
    ArchiveLimits,
    ConversationSet,
    ConversationSummary,
    IngestRun,
    SearchResult,
    SearchScope,
    SetRoots,
    SetStats,
    Transcript,
)
from .renderer import TranscriptRenderer
from .search import search_conversations
from .storage import DirectoryLayout, SetRegistry, StorageLayout, sanitize_set_name
from .validator import is_safe_entry_path

logger = logging.getLogger(__name__)


def _dir_usage(root: Path) -> tuple[int, int]:
    """(file count, total bytes) under ``root``."""
    count = 0
    size = 0
    if not root.is_dir():
        return 0, 0
    for path in root.rglob("*"):
        if path.is_file():
            count += 1
            size += path.stat().st_size
    return count, size


class ConversationLibrary:
    """Owns the storage layout, the set registry and the shared asset-search cache.

    Build one per process (or per test) and pass it to whatever serves requests.
    """

    def __init__(
        self,
        layout: StorageLayout | None = None,
        registry: SetRegistry | None = None,
        cache: FileSearchCache | None = None,
        limits: ArchiveLimits | None = None,
    ):
        self.layout = layout or DirectoryLayout()
        self.registry = registry or SetRegistry(REGISTRY_PATH)
        self.cache = cache or FileSearchCache()
        self.limits = limits or ArchiveLimits()

    def _roots(self, set_id: str) -> SetRoots:
        if not self.registry.exists(set_id):
            raise SetNotFoundError(f"Conversation-set not found: {set_id}")
        return self.layout.name_to_roots(set_id)

    def ingest_archive(
        self,
        data: bytes,
        set_name: str,
        progress: ProgressSink | None = None,
        cancel: threading.Event | None = None,
        overwrite: bool = False,
        declared_size: int | None = None,
    ) -> str:
        """Import an export archive as a new conversation-set and return its id.

        With ``overwrite`` an existing set of the same name is refreshed in
        place and existing conversation files are replaced.
        """
        name = sanitize_set_name(set_name)
        if not overwrite and self.registry.exists(name):
            raise SetExistsError(f"Conversation-set already exists: {name}")

        roots = self.layout.name_to_roots(name)

        def commit(run: IngestRun):
            conversation_count = len(list(roots.conversations_dir.glob("*.json")))
            register = self.registry.replace if overwrite else self.registry.register
            register(
                name,
                archive_size=run.archive_size,
                conversation_count=conversation_count,
                media_count=run.media_count,
            )

        pipeline = IngestPipeline(
            name,
            roots,
            limits=self.limits,
            progress=progress,
            cancel=cancel,
            on_collision="overwrite" if overwrite else "skip",
            on_commit=commit,
        )
        try:
            pipeline.execute(data, declared_size)
        finally:
            self.cache.invalidate(roots.set_root)
        return name

    def _iter_records(self, roots: SetRoots) -> Iterator[tuple[ConversationSummary, dict[str, Any]]]:
        if not roots.conversations_dir.is_dir():
            return
        paths = sorted(roots.conversations_dir.glob("*.json"), key=lambda p: p.name, reverse=True)
        for path in paths:
            try:
                with open(path, encoding="utf-8") as f:
                    conv = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable conversation file %s: %s", path.name, e)
                continue
            if not isinstance(conv, dict):
                logger.warning("Skipping conversation file %s: not an object", path.name)
                continue
            yield _summarize(path.name, conv), conv

    def list_conversations(self, set_id: str) -> list[ConversationSummary]:
        """Conversations in a set, newest filename first."""
        roots = self._roots(set_id)
        return [summary for summary, _ in self._iter_records(roots)]

    def _conversation_path(self, roots: SetRoots, conversation_id: str) -> Path:
        if (
            not is_safe_entry_path(conversation_id)
            or "/" in conversation_id
            or conversation_id.startswith(".")
            or not conversation_id.endswith(".json")
        ):
            raise ConversationNotFoundError(f"Conversation not found: {conversation_id}")
        path = roots.conversations_dir / conversation_id
        if not path.is_file():
            raise ConversationNotFoundError(f"Conversation not found: {conversation_id}")
        return path

    def resolver_for(self, set_id: str) -> AssetResolver:
        roots = self._roots(set_id)
        index = load_asset_index(roots.index_path, roots.html_path)
        return AssetResolver(roots.media_root, index, self.cache)

    def resolve_asset(self, set_id: str, pointer: str) -> Path | None:
        return self.resolver_for(set_id).resolve(pointer)

    def get_conversation(self, set_id: str, conversation_id: str) -> Transcript:
        """Render one conversation file of a set as a Transcript."""
        roots = self._roots(set_id)
        path = self._conversation_path(roots, conversation_id)
        try:
            with open(path, encoding="utf-8") as f:
                conv = json.load(f)
        except ValueError as e:
            logger.warning("Conversation file %s is not valid JSON: %s", path.name, e)
            raise ConversationNotFoundError(f"Conversation not readable: {conversation_id}") from e
        if not isinstance(conv, dict):
            raise ConversationNotFoundError(f"Conversation not readable: {conversation_id}")

        def asset_url(asset: Path) -> str:
            try:
                return asset.relative_to(roots.set_root).as_posix()
            except ValueError:
                return asset.as_posix()

        renderer = TranscriptRenderer(self.resolver_for(set_id), asset_url=asset_url)
        return renderer.render(conv, conversation_id=conversation_id)

    def export_conversation(self, set_id: str, conversation_id: str, fmt: ExportFormat = "md") -> str:
        """Render one conversation as a Markdown, plain text or HTML document.

        Asset links are relative to the set root.
        """
        return export_transcript(self.get_conversation(set_id, conversation_id), fmt)

    def search_conversations(
        self,
        set_id: str,
        query: str,
        scope: SearchScope = "all",
        case_sensitive: bool = False,
    ) -> list[SearchResult]:
        roots = self._roots(set_id)
        return search_conversations(self._iter_records(roots), query, scope, case_sensitive)

    def list_sets(self) -> list[ConversationSet]:
        return self.registry.list_sets()

    def get_set(self, set_id: str) -> ConversationSet:
        entry = self.registry.get(set_id)
        if entry is None:
            raise SetNotFoundError(f"Conversation-set not found: {set_id}")
        return entry

    def delete_set(self, set_id: str):
        """Remove a set's files and its registry entry."""
        roots = self._roots(set_id)
        if roots.set_root.exists():
            shutil.rmtree(roots.set_root)
        self.registry.delete(set_id)
        self.cache.invalidate(roots.set_root)
        logger.info("Deleted conversation-set %s", set_id)

    def set_stats(self, set_id: str) -> SetStats:
        roots = self._roots(set_id)
        conversations, conversation_bytes = _dir_usage(roots.conversations_dir)
        media, media_bytes = _dir_usage(roots.media_root)
        _, total_bytes = _dir_usage(roots.set_root)
        return SetStats(
            name=set_id,
            conversation_count=conversations,
            media_count=media,
            conversation_bytes=conversation_bytes,
            media_bytes=media_bytes,
            total_bytes=total_bytes,
        )

    def close(self):
        self.registry.close()


def _summarize(filename: str, conv: dict[str, Any]) -> ConversationSummary:
    title = conv.get("title")
    create_time = conv.get("create_time")
    update_time = conv.get("update_time")
    return ConversationSummary(
        id=filename,
        title=title if isinstance(title, str) and title else "Untitled",
        date=filename.split("_", 1)[0],
        create_time=create_time if _is_number(create_time) else None,
        update_time=update_time if _is_number(update_time) else None,
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
