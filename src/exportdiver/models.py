"""Data models for archives, conversation-sets, transcripts and search."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from . import config


class ArchiveLimits(BaseModel):
    max_upload_size: int = config.MAX_UPLOAD_SIZE
    max_extracted_size: int = config.MAX_EXTRACTED_SIZE
    max_compression_ratio: float = config.MAX_COMPRESSION_RATIO
    max_files: int = config.MAX_FILES_IN_ZIP


class ExtractedEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    relative_path: str
    size_bytes: int
    compressed_size: int = 0
    is_directory: bool = False


class ArchiveListing(BaseModel):
    entries: list[ExtractedEntry] = []
    total_uncompressed: int = 0
    archive_size: int = 0

    @property
    def files(self) -> list[ExtractedEntry]:
        return [e for e in self.entries if not e.is_directory]


class RelocatedFile(BaseModel):
    """An extracted file and where it lands relative to its destination root."""

    source: str
    target: str


class DetectedStructure(BaseModel):
    wrapper: str | None = None
    conversation_document: str
    companion_html: str | None = None
    media: list[RelocatedFile] = []
    other: list[RelocatedFile] = []


class MessageNode(BaseModel):
    id: str
    message: dict[str, Any] | None = None
    parent: str | None = None
    children: list[str] = []
    create_time: float | None = None


class ConversationRecord(BaseModel):
    id: str
    title: str
    create_time: float | None = None
    update_time: float | None = None
    mapping: dict[str, MessageNode] = {}


class SplitResult(BaseModel):
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    written: list[str] = []


class SetRoots(BaseModel):
    set_root: Path
    media_root: Path
    index_path: Path
    conversations_dir: Path
    html_path: Path


class ConversationSet(BaseModel):
    name: str
    created_at: datetime
    archive_size: int = 0
    conversation_count: int = 0
    media_count: int = 0


class ConversationSummary(BaseModel):
    id: str
    title: str
    date: str
    create_time: float | None = None
    update_time: float | None = None

    @property
    def recency(self) -> float:
        return self.update_time or self.create_time or 0.0


PartKind = Literal["html", "transcript", "image", "audio", "video", "file", "missing"]


class TranscriptPart(BaseModel):
    kind: PartKind
    html: str | None = None
    raw: str | None = None
    text: str | None = None
    pointer: str | None = None
    path: str | None = None


class TranscriptMessage(BaseModel):
    author: str
    role: str
    created_at: float = 0.0
    parts: list[TranscriptPart] = []


class Transcript(BaseModel):
    id: str
    title: str
    create_time: float | None = None
    update_time: float | None = None
    messages: list[TranscriptMessage] = []


SearchScope = Literal["title", "content", "all"]


class SearchMatch(BaseModel):
    type: Literal["title", "content"]
    text: str
    context: str
    message_index: int | None = None
    author: str | None = None


class SearchResult(BaseModel):
    conversation: ConversationSummary
    matches: list[SearchMatch] = []
    relevance_score: int = 0


class ProgressEvent(BaseModel):
    stage: str
    percentage: int = Field(ge=0, le=100)
    message: str = ""


class PipelineState(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    STRUCTURE_DETECTED = "structure_detected"
    SPLITTING = "splitting"
    FINALIZING = "finalizing"
    COMMITTED = "committed"
    FAILED = "failed"


class IngestRun(BaseModel):
    """State of one ingestion run, kept current as the pipeline advances."""

    set_name: str
    state: PipelineState = PipelineState.RECEIVED
    failure_reason: str | None = None
    archive_size: int = 0
    bytes_extracted: int = 0
    media_count: int = 0
    other_count: int = 0
    split: SplitResult | None = None

    @property
    def conversation_count(self) -> int:
        if self.split is None:
            return 0
        return self.split.processed + self.split.skipped


class SetStats(BaseModel):
    name: str
    conversation_count: int = 0
    media_count: int = 0
    conversation_bytes: int = 0
    media_bytes: int = 0
    total_bytes: int = 0
