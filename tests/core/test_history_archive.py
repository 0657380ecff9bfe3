"""Tests for mindcore.history_archive."""

import json
from datetime import datetime

import pytest

from mindcore.errors import PersistenceError
from mindcore.history_archive import HistoryArchive
from mindcore.turns import ASSISTANT, USER, Turn


START = datetime(2025, 6, 1, 9, 30, 5)


@pytest.fixture
def histories_dir(tmp_path):
    return tmp_path / "bots" / "andy" / "histories"


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def test_file_created_lazily(histories_dir):
    archive = HistoryArchive(histories_dir, session_start=START)
    assert archive.archive_file is None
    assert not histories_dir.exists()


def test_first_append_creates_named_file(histories_dir):
    archive = HistoryArchive(histories_dir, session_start=START)
    archive.append([Turn(role=USER, content="steve: hi")])

    assert archive.archive_file == histories_dir / "2025-06-01_09-30-05.json"
    assert _read(archive.archive_file) == [{"role": "user", "content": "steve: hi"}]


def test_appends_accumulate_in_order(histories_dir):
    archive = HistoryArchive(histories_dir, session_start=START)
    archive.append([Turn(role=USER, content="steve: hi")])
    archive.append([Turn(role=ASSISTANT, content="hello"), {"role": "user", "content": "steve: bye"}])

    assert [t["content"] for t in _read(archive.archive_file)] == ["steve: hi", "hello", "steve: bye"]


def test_written_with_four_space_indent(histories_dir):
    archive = HistoryArchive(histories_dir, session_start=START)
    archive.append([Turn(role=USER, content="steve: hi")])
    text = archive.archive_file.read_text(encoding="utf-8")
    assert '\n    {\n        "role": "user"' in text


def test_existing_file_for_same_start_is_extended(histories_dir):
    histories_dir.mkdir(parents=True)
    (histories_dir / "2025-06-01_09-30-05.json").write_text(
        json.dumps([{"role": "system", "content": "earlier"}]), encoding="utf-8"
    )
    archive = HistoryArchive(histories_dir, session_start=START)
    archive.append([Turn(role=USER, content="steve: hi")])
    assert len(_read(archive.archive_file)) == 2


def test_unwritable_directory_raises_persistence_error(tmp_path):
    blocker = tmp_path / "histories"
    blocker.write_text("not a directory", encoding="utf-8")
    archive = HistoryArchive(blocker, session_start=START)
    with pytest.raises(PersistenceError):
        archive.append([Turn(role=USER, content="steve: hi")])


def test_corrupt_archive_raises_persistence_error(histories_dir):
    archive = HistoryArchive(histories_dir, session_start=START)
    archive.append([Turn(role=USER, content="steve: hi")])
    archive.archive_file.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        archive.append([Turn(role=USER, content="steve: again")])
