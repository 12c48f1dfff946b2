"""Archive validation and bounded extraction.

Every check is fail-closed: one bad entry rejects the whole archive, and
nothing is extracted until the central directory has passed all checks.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from pathlib import Path

from .config import ZIP_SIGNATURES
from .errors import (
    BadSignature,
    CorruptArchive,
    ExtractedSizeExceeded,
    OversizeArchive,
    TooManyEntries,
    UnsafeEntryPath,
    ZipBombSuspected,
)
from .models import ArchiveLimits, ArchiveListing, ExtractedEntry

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_CHUNK_SIZE = 64 * 1024


def is_safe_entry_path(name: str) -> bool:
    """Return False for entry names that could escape the extraction root."""
    if not name or _CONTROL_CHARS.search(name):
        return False
    if "\\" in name:
        return False
    if name.startswith("/") or _DRIVE_PREFIX.match(name):
        return False
    return ".." not in name.split("/")


def _check_signature(data: bytes) -> None:
    if not any(data.startswith(sig) for sig in ZIP_SIGNATURES):
        raise BadSignature(f"leading bytes {data[:4]!r} match no ZIP signature")


def _open_zip(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data), "r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
        raise CorruptArchive(f"central directory unreadable: {e}") from e


def validate_archive(
    data: bytes,
    declared_size: int | None = None,
    limits: ArchiveLimits | None = None,
) -> ArchiveListing:
    """Validate an uploaded archive and return its entry listing.

    Checks run in order: size, signature, zip-bomb heuristics, entry paths.
    Raises an ArchiveValidationError subclass on the first failure.
    """
    limits = limits or ArchiveLimits()
    measured = len(data)
    size = max(measured, declared_size or 0)

    if size > limits.max_upload_size:
        raise OversizeArchive(
            f"archive is {size} bytes (max {limits.max_upload_size})"
        )

    _check_signature(data)

    with _open_zip(data) as zf:
        infos = zf.infolist()

    if len(infos) > limits.max_files:
        raise TooManyEntries(f"{len(infos)} entries (max {limits.max_files})")

    total_uncompressed = sum(info.file_size for info in infos)
    if total_uncompressed > limits.max_extracted_size:
        raise ZipBombSuspected(
            f"uncompressed total {total_uncompressed} bytes "
            f"(max {limits.max_extracted_size})"
        )

    ratio = total_uncompressed / max(measured, 1)
    if ratio > limits.max_compression_ratio:
        raise ZipBombSuspected(
            f"compression ratio {ratio:.0f}:1 (max {limits.max_compression_ratio:.0f}:1)"
        )

    entries: list[ExtractedEntry] = []
    for info in infos:
        # orig_filename keeps anything after an embedded NUL that zipfile trims
        for name in (info.orig_filename, info.filename):
            if not is_safe_entry_path(name):
                raise UnsafeEntryPath(f"unsafe entry path {name!r}")
        entries.append(
            ExtractedEntry(
                relative_path=info.filename,
                size_bytes=info.file_size,
                compressed_size=info.compress_size,
                is_directory=info.is_dir(),
            )
        )

    logger.debug(
        "Archive validated: %d entries, %d bytes uncompressed, %.1f:1 ratio",
        len(entries),
        total_uncompressed,
        ratio,
    )
    return ArchiveListing(
        entries=entries,
        total_uncompressed=total_uncompressed,
        archive_size=measured,
    )


def extract_archive(
    data: bytes,
    listing: ArchiveListing,
    workspace: Path,
    limits: ArchiveLimits | None = None,
) -> int:
    """Extract a validated archive into ``workspace``, counting real bytes.

    Entries are taken from ``listing``; an entry that inflates past its declared
    size, or a running total past the extraction ceiling, aborts with
    ExtractedSizeExceeded. Returns the number of bytes written.
    """
    limits = limits or ArchiveLimits()
    root = workspace.resolve()
    written_total = 0

    with _open_zip(data) as zf:
        for entry in listing.entries:
            target = (root / entry.relative_path).resolve()
            if target != root and root not in target.parents:
                raise UnsafeEntryPath(f"entry resolves outside workspace: {entry.relative_path!r}")

            if entry.is_directory:
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            written = 0
            try:
                with zf.open(entry.relative_path) as src, open(target, "wb") as dst:
                    while True:
                        chunk = src.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        written += len(chunk)
                        written_total += len(chunk)
                        if written > entry.size_bytes:
                            raise ExtractedSizeExceeded(
                                f"{entry.relative_path!r} inflated past {entry.size_bytes} bytes"
                            )
                        if written_total > limits.max_extracted_size:
                            raise ExtractedSizeExceeded(
                                f"extraction passed {limits.max_extracted_size} bytes"
                            )
                        dst.write(chunk)
            except (zipfile.BadZipFile, EOFError) as e:
                raise CorruptArchive(f"failed to read {entry.relative_path!r}: {e}") from e

    logger.debug("Extracted %d bytes into %s", written_total, workspace)
    return written_total

