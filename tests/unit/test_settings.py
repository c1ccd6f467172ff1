from pathlib import Path

import pytest

from folder_digest.config import SETTINGS_FILE_NAME
from folder_digest.settings import Settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FOLDER_DIGEST_SETTINGS", raising=False)
    monkeypatch.delenv("FOLDER_DIGEST_MAX_MB", raising=False)

    settings = Settings()

    assert settings.root.resolve() == Path.cwd().resolve()
    assert settings.output is None
    assert settings.settings_file == Path.cwd() / SETTINGS_FILE_NAME
    assert settings.max_mb == "1"
    assert settings.include_hidden is False
    assert settings.include_binaries is False
    assert settings.type == "LogAttachment"
    assert settings.position == "before"


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FOLDER_DIGEST_SETTINGS", str(tmp_path / "custom.json"))
    monkeypatch.setenv("FOLDER_DIGEST_MAX_MB", "2.5")

    settings = Settings()

    assert settings.settings_file == tmp_path / "custom.json"
    assert settings.max_mb == "2.5"
