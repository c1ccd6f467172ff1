from __future__ import annotations

import codecs
import threading
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from folder_digest.config import NO_FILES_MESSAGE, TraversalOptions
from folder_digest.exceptions import DigestCancelledError
from folder_digest.output_construction import Admission, admit_candidate, build_digest

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.unit
def test_build_digest_single_file_layout(tmp_path: Path) -> None:
    (tmp_path / "README.md").write_text("hello", encoding="utf-8")
    stamp = datetime(2024, 5, 6, 7, 8, 9)  # noqa: DTZ001

    result = build_digest(tmp_path, TraversalOptions(), generated_at=stamp)

    assert result.included_count == 1
    assert result.skipped_count == 0
    assert result.text == (
        "# Directory Digest\n"
        f"Root: {tmp_path}\n"
        "Generated: 2024-05-06 07:08:09\n"
        "\n"
        "--- START FILE: README.md (5 bytes) ---\n"
        "hello\n"
        "--- END FILE: README.md ---\n"
        "\n"
    )


@pytest.mark.unit
def test_build_digest_keeps_existing_trailing_newline(tmp_path: Path) -> None:
    (tmp_path / "win.txt").write_bytes(b"line\r\n")

    result = build_digest(tmp_path)

    assert "--- START FILE: win.txt (6 bytes) ---\nline\r\n--- END FILE: win.txt ---\n" in result.text


@pytest.mark.unit
def test_build_digest_strips_byte_order_mark(tmp_path: Path) -> None:
    (tmp_path / "bom.txt").write_bytes(codecs.BOM_UTF8 + b"caf\xc3\xa9\n")

    result = build_digest(tmp_path)

    assert "(9 bytes) ---\ncafé\n--- END FILE: bom.txt" in result.text


@pytest.mark.unit
def test_oversized_files_are_skipped(tmp_path: Path) -> None:
    (tmp_path / "small.txt").write_text("ok", encoding="utf-8")
    (tmp_path / "large.txt").write_text("x" * 100, encoding="utf-8")

    result = build_digest(tmp_path, TraversalOptions(max_file_size_bytes=99))

    assert "large.txt" not in result.text
    assert "small.txt" in result.text
    assert (result.included_count, result.skipped_count) == (1, 1)


@pytest.mark.unit
def test_binary_extension_respects_include_binaries(tmp_path: Path) -> None:
    (tmp_path / "notes.pdf").write_text("actually text", encoding="utf-8")

    excluded = build_digest(tmp_path, TraversalOptions(include_binaries=False))
    included = build_digest(tmp_path, TraversalOptions(include_binaries=True))

    assert "notes.pdf" not in excluded.text
    assert excluded.skipped_count == 1
    assert "--- START FILE: notes.pdf (13 bytes) ---\nactually text\n" in included.text


@pytest.mark.unit
def test_sniffed_binary_content_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "blob.dat").write_bytes(b"abc\x00def")

    result = build_digest(tmp_path)

    assert result.included_count == 0
    assert result.skipped_count == 1


@pytest.mark.unit
def test_allow_set_limits_inclusion(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "b.txt").write_text("b", encoding="utf-8")

    result = build_digest(tmp_path, TraversalOptions(), allow_set={"a.txt"})

    assert "--- START FILE: a.txt" in result.text
    assert "b.txt" not in result.text
    assert (result.included_count, result.skipped_count) == (1, 1)


@pytest.mark.unit
def test_allow_set_matches_case_and_separator_insensitively(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.py").write_text("print()", encoding="utf-8")

    result = build_digest(tmp_path, TraversalOptions(), allow_set={"SRC\\app.PY"})

    assert "--- START FILE: src/App.py (7 bytes) ---" in result.text


@pytest.mark.unit
def test_no_files_writes_placeholder(tmp_path: Path) -> None:
    result = build_digest(tmp_path)

    assert result.included_count == 0
    assert result.text.endswith(f"\n\n{NO_FILES_MESSAGE}\n")


@pytest.mark.unit
def test_hidden_files_count_as_skipped(tmp_path: Path) -> None:
    (tmp_path / ".secret").write_text("s", encoding="utf-8")
    (tmp_path / "visible.txt").write_text("v", encoding="utf-8")

    result = build_digest(tmp_path)

    assert ".secret" not in result.text
    assert (result.included_count, result.skipped_count) == (1, 1)


@pytest.mark.unit
def test_skip_directories_never_reach_the_digest(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref", encoding="utf-8")
    (tmp_path / "__pycache__").mkdir()
    (tmp_path / "__pycache__" / "mod.txt").write_text("x", encoding="utf-8")

    result = build_digest(tmp_path, TraversalOptions(include_hidden=True))

    assert result.included_count == 0
    assert result.skipped_count == 0


@pytest.mark.unit
def test_cancelled_build_raises(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(DigestCancelledError):
        build_digest(tmp_path, cancel=cancel)


@pytest.mark.unit
def test_admit_candidate_checks_in_order(tmp_path: Path) -> None:
    big_binary = tmp_path / "big.zip"
    big_binary.write_bytes(b"x" * 20)
    options = TraversalOptions(max_file_size_bytes=10)

    assert admit_candidate(big_binary, "big.zip", options, frozenset()) == (Admission.TOO_LARGE, 20)
    assert admit_candidate(tmp_path / "gone.txt", "gone.txt", options, None) == (Admission.UNREADABLE, 0)


@pytest.mark.unit
def test_unreadable_content_is_skipped(tmp_path: Path, mocker: MockerFixture) -> None:
    (tmp_path / "locked.txt").write_text("secret", encoding="utf-8")
    mocker.patch(
        "folder_digest.output_construction.read_text_content",
        side_effect=PermissionError("locked"),
    )

    result = build_digest(tmp_path)

    assert (result.included_count, result.skipped_count) == (0, 1)
    assert NO_FILES_MESSAGE in result.text
