from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FolderDigestError(Exception):
    """Base exception for errors in the folder_digest module."""


@dataclass(frozen=True)
class InvalidRootError(FolderDigestError):
    """Raised when the folder to digest does not exist or is not a directory."""

    folder: Path
    message: str = "The specified folder does not exist or is not a directory."


@dataclass(frozen=True)
class DigestCancelledError(FolderDigestError):
    """Raised when a digest build is cancelled between two candidates."""

    processed: int
    message: str = "The digest build was cancelled."


@dataclass(frozen=True)
class SettingsFileError(FolderDigestError):
    """Raised when an attachment definition file cannot be loaded."""

    path: Path
    message: str
