"""Import pipeline: validation → extraction → structure → split → finalize."""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from .assets import extract_assets_json
from .config import EXTRAS_DIRNAME, TEMP_DIR, TEMP_PREFIX
from .errors import ExportDiverError, PipelineCancelled
from .models import ArchiveLimits, ArchiveListing, IngestRun, PipelineState, ProgressEvent, SetRoots
from .splitter import CollisionPolicy, load_conversation_document, split_conversations
from .structure import detect_structure, relocate
from .validator import extract_archive, validate_archive

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]

STAGE_PERCENTAGES = {
    PipelineState.RECEIVED: 0,
    PipelineState.VALIDATING: 0,
    PipelineState.EXTRACTING: 10,
    PipelineState.STRUCTURE_DETECTED: 40,
    PipelineState.SPLITTING: 50,
    PipelineState.FINALIZING: 80,
    PipelineState.COMMITTED: 100,
}


class IngestPipeline:
    """Runs one archive through ingestion into the set described by ``roots``.

    Stages run strictly in order with no retry. Every transition reports a
    ProgressEvent and checks ``cancel``. On failure ``run.state`` is FAILED
    and ``run.failure_reason`` holds the error's reason tag; the error itself
    propagates. Files already written under the set root are left in place.
    """

    def __init__(
        self,
        set_name: str,
        roots: SetRoots,
        limits: ArchiveLimits | None = None,
        progress: ProgressSink | None = None,
        cancel: threading.Event | None = None,
        on_collision: CollisionPolicy = "skip",
        on_commit: Callable[[IngestRun], None] | None = None,
    ):
        self.roots = roots
        self.limits = limits or ArchiveLimits()
        self.progress = progress
        self.cancel = cancel
        self.on_collision = on_collision
        self.on_commit = on_commit
        self.run = IngestRun(set_name=set_name)

    def _emit(self, stage: str, percentage: int, message: str = ""):
        if self.progress is None:
            return
        try:
            self.progress(ProgressEvent(stage=stage, percentage=percentage, message=message))
        except Exception:
            logger.warning("Progress sink raised, continuing", exc_info=True)

    def _check_cancelled(self, state: PipelineState):
        if self.cancel is not None and self.cancel.is_set():
            raise PipelineCancelled(f"Import cancelled before {state.value}")

    def _advance(self, state: PipelineState, message: str = "", check_cancel: bool = True):
        if check_cancel:
            self._check_cancelled(state)
        self.run.state = state
        logger.debug("Ingest %s: %s", self.run.set_name, state.value)
        self._emit(state.value, STAGE_PERCENTAGES[state], message)

    def _fail(self, reason: str):
        last = STAGE_PERCENTAGES.get(self.run.state, 0)
        self.run.state = PipelineState.FAILED
        self.run.failure_reason = reason
        logger.warning("Ingest of %s failed: %s", self.run.set_name, reason)
        self._emit(PipelineState.FAILED.value, last, reason)

    def execute(self, data: bytes, declared_size: int | None = None) -> IngestRun:
        self.run.archive_size = len(data)
        self._emit(PipelineState.RECEIVED.value, 0, "Archive received")

        try:
            self._advance(PipelineState.VALIDATING, "Validating archive")
            listing = validate_archive(data, declared_size, self.limits)

            self._advance(PipelineState.EXTRACTING, "Extracting archive")
            workspace = tempfile.TemporaryDirectory(prefix=TEMP_PREFIX, dir=TEMP_DIR)
            try:
                self._process(data, listing, Path(workspace.name))
            finally:
                try:
                    workspace.cleanup()
                except OSError:
                    logger.warning("Failed to remove workspace %s", workspace.name, exc_info=True)
        except ExportDiverError as e:
            detail = getattr(e, "detail", "")
            if detail:
                logger.warning("Rejected archive for %s: %s", self.run.set_name, detail)
            self._fail(e.reason)
            raise
        except OSError:
            self._fail("io_error")
            raise

        return self.run

    def _process(self, data: bytes, listing: ArchiveListing, workspace: Path):
        self.run.bytes_extracted = extract_archive(data, listing, workspace, self.limits)
        structure = detect_structure(listing, workspace)
        # Reject a malformed document before anything reaches the set root
        records = load_conversation_document(workspace / structure.conversation_document)
        self._advance(
            PipelineState.STRUCTURE_DETECTED,
            f"Found {len(records)} conversations and {len(structure.media)} media files",
        )

        roots = self.roots
        roots.set_root.mkdir(parents=True, exist_ok=True)
        self.run.media_count = relocate(structure.media, workspace, roots.media_root)
        self.run.other_count = relocate(
            structure.other, workspace, roots.set_root / EXTRAS_DIRNAME
        )

        self._advance(PipelineState.SPLITTING, "Splitting conversations")
        self.run.split = split_conversations(
            records,
            roots.conversations_dir,
            on_collision=self.on_collision,
        )

        self._advance(PipelineState.FINALIZING, "Finalizing conversation-set")
        # An index left by a previous import would shadow the new chat.html
        roots.index_path.unlink(missing_ok=True)
        if structure.companion_html:
            shutil.copyfile(workspace / structure.companion_html, roots.html_path)
            extract_assets_json(roots.html_path, roots.index_path)
        else:
            roots.html_path.unlink(missing_ok=True)
        self._check_cancelled(PipelineState.COMMITTED)
        if self.on_commit is not None:
            self.on_commit(self.run)

        summary = (
            f"Imported {self.run.conversation_count} of {self.run.split.total} conversations, "
            f"{self.run.media_count} media files, {self.run.other_count} other files "
            f"({self.run.bytes_extracted:,} bytes extracted)"
        )
        self._advance(PipelineState.COMMITTED, summary, check_cancel=False)
        logger.info("%s: %s", self.run.set_name, summary)
