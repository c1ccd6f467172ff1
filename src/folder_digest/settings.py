from __future__ import annotations

import os
from pathlib import Path

from dotenv import find_dotenv
from pydantic import BaseModel, ConfigDict, Field

from folder_digest.config import SETTINGS_FILE_NAME

ENV_FILE = find_dotenv(usecwd=True)


def default_settings_file() -> Path:
    """Settings file from `FOLDER_DIGEST_SETTINGS`, else next to the working directory."""
    return Path(os.environ.get("FOLDER_DIGEST_SETTINGS") or Path.cwd() / SETTINGS_FILE_NAME)


def default_max_mb() -> str:
    return os.environ.get("FOLDER_DIGEST_MAX_MB", "1")


class Settings(BaseModel):
    """Configuration settings for the folder_digest command line."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str = Field(default="build", description="Subcommand to run.")
    root: Path = Field(default_factory=Path.cwd, description="Folder to digest.")
    output: Path | None = Field(default=None, description="Output file; stdout when omitted.")
    settings_file: Path = Field(default_factory=default_settings_file, description="User settings JSON.")
    log_file: str = Field(default="", description="Log file path.")
    verbose: bool = Field(default=False, description="Log skipped files.")

    include_hidden: bool = Field(default=False, description="Include hidden files and folders.")
    include_binaries: bool = Field(default=False, description="Include binary files.")
    max_mb: str = Field(default_factory=default_max_mb, description="Max file size in MB.")
    no_selection: bool = Field(default=False, description="Ignore persisted exclusions.")
    all_attachments: bool = Field(default=False, description="Apply every configured attachment.")

    exclude: list[str] = Field(default_factory=list, description="Relative paths to exclude.")
    include: list[str] = Field(default_factory=list, description="Relative paths to re-include.")
    activate: list[str] = Field(default_factory=list, description="Attachment ids to activate.")
    deactivate: list[str] = Field(default_factory=list, description="Attachment ids to deactivate.")
    prune: bool = Field(default=False, description="Drop stale exclusions and activations.")

    type: str = Field(default="LogAttachment", description="Attachment renderer type.")
    position: str = Field(default="before", description="Attachment position.")
    file: str = Field(default="", description="Log file for the built-in renderer.")
    start_pattern: str = Field(default="", description="Regex of the first copied line.")
    state: str = Field(default="", description="Renderer state as JSON.")
    from_yaml: Path | None = Field(default=None, description="YAML file of attachments.")
    activate_in: Path | None = Field(default=None, description="Folder to activate new attachments in.")
    attachment_ids: list[str] = Field(default_factory=list, description="Attachment ids to remove.")
