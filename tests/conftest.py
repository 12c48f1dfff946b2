from __future__ import annotations

import io
import json
import zipfile

import pytest

from exportdiver.assets import FileSearchCache
from exportdiver.library import ConversationLibrary
from exportdiver.storage import DirectoryLayout, SetRegistry


def make_zip(files: dict[str, bytes | str], compression: int = zipfile.ZIP_STORED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


def make_conversation(
    title: str,
    messages: list[tuple[str, str]],
    create_time: float | None = 1_700_000_000.0,
    update_time: float | None = None,
    conv_id: str = "conv-1",
) -> dict:
    """Build an export record whose messages form a single chain under a root node."""
    mapping = {"root": {"id": "root", "message": None, "parent": None, "children": []}}
    parent = "root"
    for i, (role, text) in enumerate(messages):
        node_id = f"m{i}"
        mapping[node_id] = {
            "id": node_id,
            "message": {
                "id": node_id,
                "author": {"role": role},
                "create_time": (create_time or 0) + i,
                "content": {"content_type": "text", "parts": [text]},
            },
            "parent": parent,
            "children": [],
        }
        mapping[parent]["children"].append(node_id)
        parent = node_id

    conv = {"id": conv_id, "title": title, "mapping": mapping}
    if create_time is not None:
        conv["create_time"] = create_time
    if update_time is not None:
        conv["update_time"] = update_time
    return conv


def export_zip(conversations: list[dict], extra: dict[str, bytes | str] | None = None, prefix: str = "") -> bytes:
    files: dict[str, bytes | str] = {f"{prefix}conversations.json": json.dumps(conversations)}
    for name, content in (extra or {}).items():
        files[f"{prefix}{name}"] = content
    return make_zip(files)


@pytest.fixture
def library(tmp_path):
    lib = ConversationLibrary(
        layout=DirectoryLayout(tmp_path / "sets"),
        registry=SetRegistry(tmp_path / "registry.db"),
        cache=FileSearchCache(max_size=100),
    )
    yield lib
    lib.close()
