"""Exception hierarchy for ingestion and conversation-set access.

Validation errors deliberately carry a generic ``str()``: they are shown to
whoever uploaded the archive, so entry names and filesystem paths stay in
``detail`` and only ever reach the log.
"""

from __future__ import annotations


class ExportDiverError(Exception):
    """Base class for every error raised by exportdiver."""

    reason = "error"


class ArchiveValidationError(ExportDiverError):
    """The archive was rejected before anything left the temporary workspace."""

    reason = "invalid_archive"
    user_message = "The uploaded archive was rejected."

    def __init__(self, detail: str = ""):
        super().__init__(self.user_message)
        self.detail = detail


class OversizeArchive(ArchiveValidationError):
    reason = "oversize"
    user_message = "The uploaded archive is too large."


class BadSignature(ArchiveValidationError):
    reason = "bad_signature"
    user_message = "The uploaded file is not a ZIP archive."


class CorruptArchive(ArchiveValidationError):
    reason = "corrupt"
    user_message = "The uploaded archive could not be read."


class ZipBombSuspected(ArchiveValidationError):
    reason = "zip_bomb"
    user_message = "The uploaded archive expands to an unsafe size."


class TooManyEntries(ArchiveValidationError):
    reason = "too_many_entries"
    user_message = "The uploaded archive contains too many files."


class ExtractedSizeExceeded(ArchiveValidationError):
    reason = "extracted_too_large"
    user_message = "The uploaded archive expands to an unsafe size."


class UnsafeEntryPath(ArchiveValidationError):
    reason = "unsafe_path"
    user_message = "The uploaded archive contains unsafe file paths."


class StructureError(ExportDiverError):
    """The archive extracted but does not look like a chat export."""

    reason = "structure"


class MissingConversationDocument(StructureError):
    reason = "missing_conversation_document"

    def __init__(self, message: str = "No conversations.json found in the archive."):
        super().__init__(message)


class ConversationDocumentNotArray(StructureError):
    reason = "conversation_document_not_array"

    def __init__(self, message: str = "conversations.json is not a JSON array."):
        super().__init__(message)


class PipelineCancelled(ExportDiverError):
    reason = "cancelled"


class InvalidSetName(ExportDiverError):
    reason = "invalid_set_name"


class SetExistsError(ExportDiverError):
    reason = "set_exists"


class SetNotFoundError(ExportDiverError):
    reason = "set_not_found"


class ConversationNotFoundError(ExportDiverError):
    reason = "conversation_not_found"
