from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from folder_digest import __version__, cli
from folder_digest.attachments import AttachmentPosition
from folder_digest.exceptions import InvalidRootError
from folder_digest.renderers import LogRenderer
from folder_digest.settings import Settings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.unit
def test_parse_args_build_options(tmp_path: Path) -> None:
    settings = cli.parse_args(
        [
            "build",
            str(tmp_path),
            "--include-hidden",
            "--max-mb",
            "0.25",
            "--output",
            "digest.txt",
            "--no-selection",
        ],
    )

    assert settings.command == "build"
    assert settings.root == tmp_path
    assert settings.include_hidden is True
    assert settings.include_binaries is False
    assert settings.max_mb == "0.25"
    assert settings.output == Path("digest.txt")
    assert settings.no_selection is True


@pytest.mark.unit
def test_parse_args_select_is_repeatable() -> None:
    settings = cli.parse_args(["select", ".", "--exclude", "a.txt", "--exclude", "b.txt", "--activate", "id1"])

    assert settings.exclude == ["a.txt", "b.txt"]
    assert settings.activate == ["id1"]
    assert settings.include == []


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    captured = capsys.readouterr()
    assert __version__ in captured.out


@pytest.mark.unit
def test_parse_args_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args([])


@pytest.mark.unit
def test_traversal_options_fall_back_on_bad_limit() -> None:
    options = cli.traversal_options(Settings(max_mb="lots", include_binaries=True))

    assert options.max_file_size_bytes == 1024 * 1024
    assert options.include_binaries is True


@pytest.mark.unit
def test_ensure_root_rejects_files(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x", encoding="utf-8")

    with pytest.raises(InvalidRootError) as exc_info:
        cli.ensure_root(not_a_dir)

    assert exc_info.value.folder == not_a_dir


@pytest.mark.unit
def test_descriptor_from_options_builds_log_state() -> None:
    settings = Settings(command="attach", file="test.log", start_pattern="^Run", position="after")

    descriptor = cli._descriptor_from_options(settings)  # noqa: SLF001

    assert descriptor.type == "LogAttachment"
    assert descriptor.position is AttachmentPosition.AFTER
    assert LogRenderer.from_state(descriptor.state or "") == LogRenderer(file_path="test.log", start_pattern="^Run")


@pytest.mark.unit
def test_descriptor_from_options_keeps_explicit_state() -> None:
    settings = Settings(command="attach", type="acme.renderers:Banner", state='{"text": "hi"}')

    descriptor = cli._descriptor_from_options(settings)  # noqa: SLF001

    assert descriptor.type == "acme.renderers:Banner"
    assert descriptor.state == '{"text": "hi"}'


@pytest.mark.unit
def test_main_reports_invalid_root(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["build", str(tmp_path / "missing"), "--settings", str(tmp_path / "s.json")])

    assert exit_code == 2
    assert "Please choose a valid folder" in capsys.readouterr().err


@pytest.mark.unit
def test_main_writes_digest_to_stdout(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    mocker: MockerFixture,
) -> None:
    root = tmp_path / "project"
    root.mkdir()
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    spy = mocker.spy(cli, "build_digest")

    exit_code = cli.main(["build", str(root), "--settings", str(tmp_path / "s.json")])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert "--- START FILE: a.txt (5 bytes) ---\nalpha\n" in captured.out
    assert "Done. 1 files included, 0 skipped." in captured.err
    assert spy.call_args.args[2] is None
    assert not (tmp_path / "s.json").exists()


@pytest.mark.unit
def test_parse_args_detach_collects_ids() -> None:
    settings = cli.parse_args(["detach", "one", "two"])

    assert settings.command == "detach"
    assert settings.attachment_ids == ["one", "two"]
