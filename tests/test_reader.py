"""Tests for the streaming JSONL reader."""

import logging
from pathlib import Path

import pytest

from catalogsync.exceptions import MalformedRecordError
from catalogsync.pipeline.reader import JsonlReader, parse_line


def test_parse_line_returns_object() -> None:
    assert parse_line('{"a": 1}') == {"a": 1}


@pytest.mark.parametrize("line", ["{not json", "[1, 2]", "42"])
def test_parse_line_rejects_non_objects(line: str) -> None:
    with pytest.raises(MalformedRecordError) as exc_info:
        parse_line(line, "data.jsonl", 7)

    assert exc_info.value.details["line_number"] == 7
    assert exc_info.value.details["path"] == "data.jsonl"


def test_reader_skips_blank_and_malformed_lines(tmp_path: Path, write_jsonl) -> None:
    """Bad lines are counted, never fatal."""
    path = write_jsonl(
        tmp_path / "rows.jsonl",
        [{"id": 1}, "", "{broken", {"id": 2}, "[1]", {"id": 3}],
    )
    reader = JsonlReader(path)

    records = list(reader)

    assert [r["id"] for r in records] == [1, 2, 3]
    assert reader.records == 3
    assert reader.malformed == 2


def test_reader_is_reiterable(tmp_path: Path, write_jsonl) -> None:
    """Each pass starts from the first line with fresh counters."""
    path = write_jsonl(tmp_path / "rows.jsonl", [{"id": 1}, "oops", {"id": 2}])
    reader = JsonlReader(path)

    first = list(reader)
    second = list(reader)

    assert first == second
    assert reader.records == 2
    assert reader.malformed == 1


def test_reader_is_lazy(tmp_path: Path, write_jsonl) -> None:
    path = write_jsonl(tmp_path / "rows.jsonl", [{"id": i} for i in range(5)])
    iterator = iter(JsonlReader(path))

    assert next(iterator) == {"id": 0}
    assert next(iterator) == {"id": 1}


def test_reader_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        JsonlReader(tmp_path / "missing.jsonl")


def test_reader_logs_progress(tmp_path: Path, write_jsonl, caplog) -> None:
    path = write_jsonl(tmp_path / "rows.jsonl", [{"id": i} for i in range(5)])
    reader = JsonlReader(path, progress_every=2)

    with caplog.at_level(logging.INFO, logger="catalogsync.pipeline.reader"):
        list(reader)

    progress = [r for r in caplog.records if "Read " in r.getMessage()]
    assert len(progress) == 2
