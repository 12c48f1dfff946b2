from __future__ import annotations

import errno
import json
from pathlib import Path

import pytest

from conftest import make_conversation
from exportdiver.errors import ConversationDocumentNotArray
from exportdiver.splitter import (
    conversation_filename,
    extract_timestamp,
    format_date_stamp,
    load_conversation_document,
    sanitize_title,
    split_conversations,
)


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Hello, World!", "Hello_World"),
        ("  spaced   out  ", "spaced_out"),
        ("keep-dashes_and_underscores", "keep-dashes_and_underscores"),
        ("???", "untitled"),
        (None, "untitled"),
        ("a" * 150, "a" * 100),
    ],
)
def test_sanitize_title(title, expected):
    assert sanitize_title(title) == expected


def test_extract_timestamp_prefers_update_time():
    assert extract_timestamp({"update_time": 20, "create_time": 10}) == 20
    assert extract_timestamp({"create_time": 10}) == 10
    assert extract_timestamp({"update_time": "soon"}) == 0
    assert extract_timestamp({}) == 0


def test_format_date_stamp_is_utc():
    assert format_date_stamp(1_700_000_000) == "2023.11.14"


def test_format_date_stamp_out_of_range_falls_back_to_epoch():
    assert format_date_stamp(1e20) == "1970.01.01"


def test_record_without_timestamps_is_filed_at_epoch():
    assert conversation_filename({"title": "No dates"}) == "1970.01.01_No_dates.json"


def test_split_writes_one_file_per_record(tmp_path):
    records = [
        make_conversation("First", [("user", "hi")], create_time=1_700_000_000),
        make_conversation("Second", [("user", "yo")], create_time=1_700_100_000),
        make_conversation("Third", [("user", "hey")], create_time=1_700_200_000),
    ]

    result = split_conversations(records, tmp_path / "out")

    assert result.processed == 3
    assert result.total == 3
    assert result.errors == 0
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == [
        "2023.11.14_First.json",
        "2023.11.16_Second.json",
        "2023.11.17_Third.json",
    ]
    saved = json.loads((tmp_path / "out" / "2023.11.14_First.json").read_text(encoding="utf-8"))
    assert saved == records[0]


def test_split_processes_newest_first(tmp_path):
    records = [
        {"title": "old", "create_time": 1},
        {"title": "new", "create_time": 1_700_000_000},
    ]

    result = split_conversations(records, tmp_path)

    assert result.written == ["2023.11.14_new.json", "1970.01.01_old.json"]


def test_collision_skip_keeps_existing_file(tmp_path):
    (tmp_path / "1970.01.01_Same.json").write_text("original", encoding="utf-8")

    result = split_conversations([{"title": "Same"}], tmp_path)

    assert result.skipped == 1
    assert result.processed == 0
    assert (tmp_path / "1970.01.01_Same.json").read_text(encoding="utf-8") == "original"


def test_collision_overwrite_replaces_file(tmp_path):
    (tmp_path / "1970.01.01_Same.json").write_text("original", encoding="utf-8")

    result = split_conversations([{"title": "Same", "x": 1}], tmp_path, on_collision="overwrite")

    assert result.processed == 1
    assert json.loads((tmp_path / "1970.01.01_Same.json").read_text(encoding="utf-8"))["x"] == 1


def test_same_date_and_title_in_one_batch_keeps_first_under_skip(tmp_path):
    records = [{"title": "Dup", "n": 1}, {"title": "Dup", "n": 2}]

    result = split_conversations(records, tmp_path)

    assert result.processed == 1
    assert result.skipped == 1


def test_bad_record_is_counted_and_batch_continues(tmp_path):
    records = ["not an object", {"title": "fine"}]

    result = split_conversations(records, tmp_path)

    assert result.errors == 1
    assert result.processed == 1


def test_unknown_collision_policy_rejected(tmp_path):
    with pytest.raises(ValueError, match="collision policy"):
        split_conversations([], tmp_path, on_collision="rename")


def test_disk_full_propagates(tmp_path, monkeypatch):
    def full_disk(self, *args, **kwargs):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(Path, "write_text", full_disk)

    with pytest.raises(OSError) as exc_info:
        split_conversations([{"title": "x"}], tmp_path)
    assert exc_info.value.errno == errno.ENOSPC


def test_load_document_requires_array(tmp_path):
    document = tmp_path / "conversations.json"
    document.write_text('{"not": "an array"}', encoding="utf-8")

    with pytest.raises(ConversationDocumentNotArray):
        load_conversation_document(document)


def test_load_document_invalid_json(tmp_path):
    document = tmp_path / "conversations.json"
    document.write_text("[{broken", encoding="utf-8")

    with pytest.raises(ConversationDocumentNotArray, match="not valid JSON"):
        load_conversation_document(document)
