"""CLI plumbing: source reading and error exit codes."""

import asyncio

import pytest

from debatelens.errors import InputValidationError
from debatelens.run import main, read_source_text


def test_read_source_text(tmp_path):
    path = tmp_path / "debate.txt"
    path.write_text("Alice: hello", encoding="utf-8")
    assert read_source_text(str(path)) == "Alice: hello"


def test_missing_transcript_is_a_validation_error(tmp_path):
    with pytest.raises(InputValidationError, match="Cannot read transcript"):
        read_source_text(str(tmp_path / "missing.txt"))


def test_missing_transcript_exits_with_error_code(tmp_path, monkeypatch):
    monkeypatch.setenv("DEBATELENS_DB_PATH", str(tmp_path / "data" / "debatelens.db"))
    monkeypatch.setenv("DEBATELENS_TEMP_DIR", str(tmp_path / "temp"))
    code = asyncio.run(
        main(["analyze-text", str(tmp_path / "missing.txt"), "--speakers", "Alice", "Bob"])
    )
    assert code == 2
