from __future__ import annotations

import json
import os
import tempfile
import threading
import zipfile

import pytest

from conftest import export_zip, make_conversation, make_zip
from exportdiver.errors import (
    ConversationDocumentNotArray,
    ConversationNotFoundError,
    InvalidSetName,
    MissingConversationDocument,
    OversizeArchive,
    PipelineCancelled,
    SetExistsError,
    SetNotFoundError,
    ZipBombSuspected,
)
from exportdiver.importer import IngestPipeline
from exportdiver.models import ArchiveLimits, PipelineState
from exportdiver.storage import DirectoryLayout, sanitize_set_name


def _two_records():
    return [
        make_conversation("First chat", [("user", "hello there")], create_time=1_700_000_000, conv_id="c1"),
        make_conversation("Second chat", [("user", "image below")], create_time=1_700_100_000, conv_id="c2"),
    ]


def test_nested_wrapper_export_becomes_set(library, tmp_path):
    data = make_zip({
        "a/b/conversations.json": json.dumps(_two_records()),
        "a/b/file-abc.png": b"png",
        "a/b/chat.html": "<html><body>no index</body></html>",
    })

    set_id = library.ingest_archive(data, "My Export")

    set_root = tmp_path / "sets" / "My Export"
    assert set_id == "My Export"
    assert sorted(p.name for p in (set_root / "conversations").iterdir()) == [
        "2023.11.14_First_chat.json",
        "2023.11.16_Second_chat.json",
    ]
    assert (set_root / "media" / "file-abc.png").read_bytes() == b"png"
    assert (set_root / "chat.html").exists()
    assert not (set_root / "assets.json").exists()
    assert library.resolver_for(set_id).index == {}


def test_ingest_registers_set(library):
    set_id = library.ingest_archive(export_zip(_two_records(), {"file-x.png": b"p"}), "export")

    entry = library.get_set(set_id)
    assert entry.conversation_count == 2
    assert entry.media_count == 1
    assert [s.name for s in library.list_sets()] == ["export"]


def test_asset_index_recovered_from_chat_html(library, tmp_path):
    html = '<script>var assetsJson = {"file-service://file-abc": "file-abc.png"};</script>'
    data = export_zip(_two_records(), {"chat.html": html, "file-abc-XYZ123.png": b"png"})

    set_id = library.ingest_archive(data, "indexed")

    index_path = tmp_path / "sets" / "indexed" / "assets.json"
    assert json.loads(index_path.read_text(encoding="utf-8")) == {"file-service://file-abc": "file-abc.png"}
    found = library.resolve_asset(set_id, "file-service://file-abc")
    assert found is not None and found.name == "file-abc-XYZ123.png"


def test_other_files_go_to_extras(library, tmp_path):
    library.ingest_archive(export_zip(_two_records(), {"user.json": "{}"}), "extras")

    assert (tmp_path / "sets" / "extras" / "extras" / "user.json").exists()


def test_zip_bomb_leaves_no_permanent_files(library, tmp_path):
    data = make_zip(
        {"conversations.json": "[]", "file-big.png": b"\x00" * 1_000_000},
        compression=zipfile.ZIP_DEFLATED,
    )

    with pytest.raises(ZipBombSuspected):
        library.ingest_archive(data, "bomb")

    assert not (tmp_path / "sets" / "bomb").exists()
    assert library.list_sets() == []


def test_oversize_archive_rejected_before_any_write(tmp_path, library):
    library.limits = ArchiveLimits(max_upload_size=10)

    with pytest.raises(OversizeArchive):
        library.ingest_archive(export_zip(_two_records()), "big")

    assert not (tmp_path / "sets" / "big").exists()


def test_missing_conversation_document(library):
    with pytest.raises(MissingConversationDocument):
        library.ingest_archive(make_zip({"file-a.png": b"p"}), "empty")


def test_duplicate_set_name_rejected(library):
    data = export_zip(_two_records())
    library.ingest_archive(data, "dup")

    with pytest.raises(SetExistsError):
        library.ingest_archive(data, "dup")


def test_overwrite_refreshes_existing_set(library, tmp_path):
    library.ingest_archive(export_zip(_two_records()), "again")
    records = _two_records()
    records[0]["extra"] = "new"

    library.ingest_archive(export_zip(records), "again", overwrite=True)

    saved = json.loads(
        (tmp_path / "sets" / "again" / "conversations" / "2023.11.14_First_chat.json").read_text(encoding="utf-8")
    )
    assert saved["extra"] == "new"
    assert len(library.list_sets()) == 1


def test_overwrite_replaces_stale_asset_index(library, tmp_path):
    old_html = '<script>var assetsJson = {"file-service://file-old": "old.png"};</script>'
    library.ingest_archive(export_zip(_two_records(), {"chat.html": old_html, "old.png": b"o"}), "assets")
    new_html = '<script>var assetsJson = {"file-service://file-new": "new-1.png"};</script>'

    library.ingest_archive(
        export_zip(_two_records(), {"chat.html": new_html, "new-1.png": b"n"}), "assets", overwrite=True
    )

    index_path = tmp_path / "sets" / "assets" / "assets.json"
    assert json.loads(index_path.read_text(encoding="utf-8")) == {"file-service://file-new": "new-1.png"}
    found = library.resolve_asset("assets", "file-service://file-new")
    assert found is not None and found.name == "new-1.png"


def test_overwrite_without_chat_html_drops_old_index(library, tmp_path):
    html = '<script>var assetsJson = {"file-service://file-old": "old.png"};</script>'
    library.ingest_archive(export_zip(_two_records(), {"chat.html": html}), "plain")

    library.ingest_archive(export_zip(_two_records()), "plain", overwrite=True)

    set_root = tmp_path / "sets" / "plain"
    assert not (set_root / "assets.json").exists()
    assert not (set_root / "chat.html").exists()
    assert library.resolver_for("plain").index == {}


def test_malformed_document_writes_nothing(library, tmp_path):
    data = make_zip({"conversations.json": '{"not": "array"}', "file-a.png": b"p", "user.json": "{}"})

    with pytest.raises(ConversationDocumentNotArray):
        library.ingest_archive(data, "bad")

    assert not (tmp_path / "sets" / "bad").exists()
    assert library.list_sets() == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("my export", "my export"),
        ('a<b>c:d"e/f\\g|h?i*j', "a-b-c-d-e-f-g-h-i-j"),
        ("  lots   of\tspace ", "lots of space"),
        ("x" * 80, "x" * 50),
    ],
)
def test_sanitize_set_name(raw, expected):
    assert sanitize_set_name(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", ".", ".."])
def test_invalid_set_names(raw):
    with pytest.raises(InvalidSetName):
        sanitize_set_name(raw)


def test_list_and_get_conversation(library):
    set_id = library.ingest_archive(export_zip(_two_records()), "browse")

    summaries = library.list_conversations(set_id)
    assert [s.id for s in summaries] == ["2023.11.16_Second_chat.json", "2023.11.14_First_chat.json"]
    assert summaries[0].date == "2023.11.16"
    assert summaries[0].title == "Second chat"

    transcript = library.get_conversation(set_id, summaries[1].id)
    assert transcript.title == "First chat"
    assert [m.author for m in transcript.messages] == ["user"]
    assert transcript.messages[0].parts[0].raw == "hello there"


def test_get_conversation_rejects_paths(library):
    set_id = library.ingest_archive(export_zip(_two_records()), "safe")

    for bad in ["../registry.db", "sub/x.json", "missing.json", ".hidden.json"]:
        with pytest.raises(ConversationNotFoundError):
            library.get_conversation(set_id, bad)


def test_unknown_set(library):
    with pytest.raises(SetNotFoundError):
        library.list_conversations("nope")
    with pytest.raises(SetNotFoundError):
        library.get_set("nope")


def test_search_through_library(library):
    set_id = library.ingest_archive(export_zip(_two_records()), "search")

    results = library.search_conversations(set_id, "image")

    assert [r.conversation.title for r in results] == ["Second chat"]
    assert results[0].relevance_score == 3


def test_delete_set_removes_files_and_entry(library, tmp_path):
    set_id = library.ingest_archive(export_zip(_two_records()), "gone")

    library.delete_set(set_id)

    assert not (tmp_path / "sets" / "gone").exists()
    assert library.list_sets() == []


def test_set_stats(library):
    set_id = library.ingest_archive(export_zip(_two_records(), {"file-a.png": b"12345"}), "stats")

    stats = library.set_stats(set_id)

    assert stats.conversation_count == 2
    assert stats.media_count == 1
    assert stats.media_bytes == 5
    assert stats.total_bytes >= stats.conversation_bytes + stats.media_bytes


def test_progress_events_and_failing_sink(library):
    events = []

    def sink(event):
        events.append((event.stage, event.percentage))
        raise RuntimeError("sink broke")

    library.ingest_archive(export_zip(_two_records()), "progress", progress=sink)

    assert events == [
        ("received", 0),
        ("validating", 0),
        ("extracting", 10),
        ("structure_detected", 40),
        ("splitting", 50),
        ("finalizing", 80),
        ("committed", 100),
    ]


def test_cancelled_run_fails_and_is_not_registered(library):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(PipelineCancelled):
        library.ingest_archive(export_zip(_two_records()), "cancelled", cancel=cancel)

    assert library.list_sets() == []


def test_pipeline_records_failure_reason_and_cleans_workspace(tmp_path, monkeypatch):
    workspaces = []
    real_temp = tempfile.TemporaryDirectory

    def tracking_temp(*args, **kwargs):
        workspace = real_temp(*args, **kwargs)
        workspaces.append(workspace.name)
        return workspace

    monkeypatch.setattr(tempfile, "TemporaryDirectory", tracking_temp)
    pipeline = IngestPipeline("broken", DirectoryLayout(tmp_path).name_to_roots("broken"))

    with pytest.raises(MissingConversationDocument):
        pipeline.execute(make_zip({"user.json": "{}"}))

    assert pipeline.run.state == PipelineState.FAILED
    assert pipeline.run.failure_reason == "missing_conversation_document"
    assert len(workspaces) == 1
    assert not os.path.exists(workspaces[0])


def test_pipeline_commits_and_reports_counts(tmp_path):
    committed = []
    pipeline = IngestPipeline(
        "ok",
        DirectoryLayout(tmp_path).name_to_roots("ok"),
        on_commit=committed.append,
    )

    run = pipeline.execute(export_zip(_two_records(), {"file-a.png": b"p"}))

    assert run.state == PipelineState.COMMITTED
    assert run.conversation_count == 2
    assert run.media_count == 1
    assert committed == [run]


def test_pipeline_reports_extracted_bytes_and_other_files(tmp_path):
    events = []
    pipeline = IngestPipeline(
        "summary",
        DirectoryLayout(tmp_path).name_to_roots("summary"),
        progress=events.append,
    )

    run = pipeline.execute(export_zip(_two_records(), {"file-a.png": b"p", "user.json": "{}"}))

    assert run.other_count == 1
    assert run.split.total == 2
    assert run.bytes_extracted > 0
    assert events[-1].message == (
        f"Imported 2 of 2 conversations, 1 media files, 1 other files "
        f"({run.bytes_extracted:,} bytes extracted)"
    )
