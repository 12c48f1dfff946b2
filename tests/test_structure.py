from __future__ import annotations

import pytest

from conftest import make_zip
from exportdiver.errors import MissingConversationDocument, UnsafeEntryPath
from exportdiver.models import RelocatedFile
from exportdiver.structure import detect_structure, find_wrapper, is_media_path, relocate
from exportdiver.validator import extract_archive, validate_archive


def _extract(tmp_path, files):
    data = make_zip(files)
    listing = validate_archive(data)
    workspace = tmp_path / "ws"
    workspace.mkdir()
    extract_archive(data, listing, workspace)
    return listing, workspace


def test_find_wrapper_single_folder():
    assert find_wrapper(["export/conversations.json", "export/file-a.png"]) == "export"


def test_find_wrapper_nested_single_child_folders():
    assert find_wrapper(["a/b/conversations.json", "a/b/file-abc.png", "a/b/chat.html"]) == "a/b"


def test_find_wrapper_none_when_files_at_root():
    assert find_wrapper(["conversations.json", "media/file-a.png"]) is None


def test_find_wrapper_none_with_several_top_folders():
    assert find_wrapper(["x/conversations.json", "y/file-a.png"]) is None


@pytest.mark.parametrize(
    "path, expected",
    [
        ("file-abc123.png", True),
        ("file_00000000abc.dat", True),
        ("audio/recording.bin", True),
        ("dalle-generations/image", True),
        ("nested/picture.JPG", True),
        ("user.json", False),
        ("message_feedback.json", False),
    ],
)
def test_is_media_path(path, expected):
    assert is_media_path(path) is expected


def test_detect_structure_strips_nested_wrapper(tmp_path):
    listing, workspace = _extract(
        tmp_path,
        {
            "a/b/conversations.json": "[]",
            "a/b/file-abc.png": b"png",
            "a/b/chat.html": "<html></html>",
            "a/b/user.json": "{}",
        },
    )

    structure = detect_structure(listing, workspace)

    assert structure.wrapper == "a/b"
    assert structure.conversation_document == "a/b/conversations.json"
    assert structure.companion_html == "a/b/chat.html"
    assert structure.media == [RelocatedFile(source="a/b/file-abc.png", target="file-abc.png")]
    assert structure.other == [RelocatedFile(source="a/b/user.json", target="user.json")]


def test_detect_structure_requires_conversation_document(tmp_path):
    listing, workspace = _extract(tmp_path, {"file-abc.png": b"png", "user.json": "{}"})

    with pytest.raises(MissingConversationDocument):
        detect_structure(listing, workspace)


def test_binary_conversation_document_is_ignored(tmp_path):
    listing, workspace = _extract(tmp_path, {"conversations.json": b"[\x00]"})

    with pytest.raises(MissingConversationDocument):
        detect_structure(listing, workspace)


def test_relocate_moves_files(tmp_path):
    listing, workspace = _extract(tmp_path, {"conversations.json": "[]", "x/file-a.png": b"png"})
    destination = tmp_path / "media"

    moved = relocate([RelocatedFile(source="x/file-a.png", target="file-a.png")], workspace, destination)

    assert moved == 1
    assert (destination / "file-a.png").read_bytes() == b"png"
    assert not (workspace / "x" / "file-a.png").exists()


def test_relocate_refuses_escaping_target(tmp_path):
    listing, workspace = _extract(tmp_path, {"conversations.json": "[]"})

    with pytest.raises(UnsafeEntryPath):
        relocate(
            [RelocatedFile(source="conversations.json", target="../outside.json")],
            workspace,
            tmp_path / "media",
        )


def test_exact_conversation_document_preferred_over_suffix_match(tmp_path):
    listing, workspace = _extract(
        tmp_path,
        {"shared_conversations.json": "[]", "conversations.json": "[]"},
    )

    assert detect_structure(listing, workspace).conversation_document == "conversations.json"
