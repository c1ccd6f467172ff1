"""Persisted per-folder selection state and configured attachments.

Only exclusions are stored: a file is included unless its relative path has
been explicitly excluded for that folder. Attachments are configured globally
and activated per folder, inactive by default.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from folder_digest.attachments import AttachmentDescriptor
from folder_digest.config import SETTINGS_FILE_NAME
from folder_digest.file_manipulation import normalize_rel
from folder_digest.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable


def folder_key(folder: str | Path) -> str:
    """Key under which a folder's state is stored, ignoring case and trailing separators."""
    return str(folder).strip().replace("\\", "/").rstrip("/").casefold()


class FolderSelectionState(BaseModel):
    """Relative paths explicitly excluded from one folder's digest."""

    excluded: set[str] = Field(default_factory=set)


class UserSettings(BaseModel):
    """User settings persisted as JSON next to where the tool is started."""

    model_config = ConfigDict(extra="ignore")

    last_folder: str | None = None
    selections: dict[str, FolderSelectionState] = Field(default_factory=dict)
    attachments: list[AttachmentDescriptor] = Field(default_factory=list)
    attachment_selections: dict[str, set[str]] = Field(
        default_factory=dict,
        description="Per-folder ids of active attachments",
    )

    @staticmethod
    def default_path() -> Path:
        return Path.cwd() / SETTINGS_FILE_NAME

    @classmethod
    def load(cls, path: Path | None = None) -> UserSettings:
        """Load settings, falling back to defaults when the file is missing or unreadable.

        Args:
            path (Path | None): the settings file; `default_path()` when omitted

        Returns:
            UserSettings: the loaded or default settings
        """
        path = path or cls.default_path()
        if not path.exists():
            return cls()
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8-sig"))
        except (OSError, ValidationError, ValueError) as e:
            logger.warning("settings_load_failed", path=str(path), error=str(e))
            return cls()

    def save(self, path: Path | None = None) -> bool:
        """Write settings as indented JSON; failures are logged, never raised.

        Returns:
            bool: True when the file was written
        """
        path = path or self.default_path()
        try:
            path.write_text(self.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
        except OSError as e:
            logger.warning("settings_save_failed", path=str(path), error=str(e))
            return False
        return True

    # ----------------------------- file selection -----------------------------

    def is_included(self, folder: str | Path, relative_path: str) -> bool:
        state = self.selections.get(folder_key(folder))
        if state is None:
            return True
        return normalize_rel(relative_path) not in state.excluded

    def set_included(self, folder: str | Path, relative_path: str, *, include: bool) -> None:
        state = self.selections.setdefault(folder_key(folder), FolderSelectionState())
        key = normalize_rel(relative_path)
        if include:
            state.excluded.discard(key)
        else:
            state.excluded.add(key)

    def prune_missing(self, folder: str | Path, current_relative_paths: Iterable[str]) -> int:
        """Drop exclusions for files that no longer exist in the folder.

        Returns:
            int: the number of exclusions removed
        """
        state = self.selections.get(folder_key(folder))
        if state is None or not state.excluded:
            return 0
        current = {normalize_rel(p) for p in current_relative_paths}
        stale = state.excluded - current
        state.excluded -= stale
        return len(stale)

    def allow_set(self, folder: str | Path, relative_paths: Iterable[str]) -> set[str]:
        """Filter candidate paths down to those the user has not excluded."""
        return {p for p in relative_paths if self.is_included(folder, p)}

    # ------------------------------ attachments -------------------------------

    def is_attachment_active(self, folder: str | Path, attachment_id: str) -> bool:
        return attachment_id in self.attachment_selections.get(folder_key(folder), set())

    def set_attachment_active(self, folder: str | Path, attachment_id: str, *, active: bool) -> None:
        active_ids = self.attachment_selections.setdefault(folder_key(folder), set())
        if active:
            active_ids.add(attachment_id)
        else:
            active_ids.discard(attachment_id)

    def prune_attachment_selections(self) -> int:
        """Forget activations of attachments that are no longer configured.

        Returns:
            int: the number of activations removed
        """
        known = {a.id for a in self.attachments}
        removed = 0
        for active_ids in self.attachment_selections.values():
            stale = active_ids - known
            active_ids -= stale
            removed += len(stale)
        return removed

    def remove_attachment(self, attachment_id: str) -> bool:
        """Drop a configured attachment together with its activations in every folder.

        Returns:
            bool: True when an attachment with that id was configured
        """
        kept = [a for a in self.attachments if a.id != attachment_id]
        if len(kept) == len(self.attachments):
            return False
        self.attachments = kept
        self.prune_attachment_selections()
        return True

    def active_attachments(self, folder: str | Path) -> list[AttachmentDescriptor]:
        """Configured attachments active for `folder`, in configured order."""
        return [a for a in self.attachments if self.is_attachment_active(folder, a.id)]

    def find_attachment(self, attachment_id: str) -> AttachmentDescriptor | None:
        return next((a for a in self.attachments if a.id == attachment_id), None)
