from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field

_ = Path()

# Directory names never descended into, compared case-insensitively.
SKIP_DIR_NAMES: frozenset[str] = frozenset(
    name.casefold()
    for name in (
        ".git",
        ".svn",
        ".hg",
        ".vs",
        ".idea",
        ".vscode",
        "node_modules",
        "bin",
        "obj",
        "packages",
        "dist",
        "build",
        "out",
        "target",
        ".mypy_cache",
        "__pycache__",
        ".venv",
        ".tox",
        ".gradle",
        ".dart_tool",
        "coverage",
    )
)

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        # images
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".bmp",
        ".ico",
        ".heic",
        # archives
        ".zip",
        ".rar",
        ".7z",
        ".gz",
        ".tgz",
        ".xz",
        ".bz2",
        ".tar",
        # documents
        ".pdf",
        ".doc",
        ".docx",
        ".xls",
        ".xlsx",
        ".ppt",
        ".pptx",
        # executables and libraries
        ".exe",
        ".dll",
        ".so",
        ".dylib",
        ".lib",
        ".a",
        ".o",
        ".obj",
        ".pdb",
        ".class",
        ".jar",
        ".war",
        ".ear",
        # fonts
        ".ttf",
        ".otf",
        ".woff",
        ".woff2",
        ".eot",
        # audio / video
        ".mp3",
        ".mp4",
        ".m4a",
        ".m4v",
        ".mov",
        ".avi",
        ".mkv",
        ".flac",
        ".wav",
        ".webm",
        # design files
        ".psd",
        ".ai",
        ".sketch",
        ".blend",
        ".fbx",
        # databases and disk images
        ".sqlite",
        ".db",
        ".db3",
        ".snd",
        ".iso",
    },
)

# Content sniffing reads this many leading bytes.
SNIFF_BYTES = 8192
# Tunable: share of non-whitespace control bytes above which a file is binary.
CONTROL_CHAR_THRESHOLD = 0.015

DEFAULT_MAX_FILE_SIZE_BYTES = 1_000_000
DEFAULT_MAX_MB = 1.0
BYTES_PER_MB = 1024 * 1024

DIGEST_TITLE = "# Directory Digest"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
NO_FILES_MESSAGE = (
    "(No files were included. Try enabling binaries, increasing the size limit, or picking another folder.)"
)

SETTINGS_FILE_NAME = "FolderDigest.settings.json"


class TraversalOptions(BaseModel):
    """Options applied to one scan. A fresh instance is supplied per build."""

    model_config = ConfigDict(frozen=True)

    include_hidden: bool = Field(default=False, description="Descend into and include hidden entries.")
    include_binaries: bool = Field(default=False, description="Skip the binary classifier.")
    max_file_size_bytes: int = Field(
        default=DEFAULT_MAX_FILE_SIZE_BYTES,
        description="Files strictly larger than this are skipped.",
    )

    @classmethod
    def from_megabytes(
        cls,
        max_mb: float | str | None,
        *,
        include_hidden: bool = False,
        include_binaries: bool = False,
    ) -> TraversalOptions:
        """Build options from a size limit expressed in megabytes.

        Unparsable or non-positive limits fall back to `DEFAULT_MAX_MB`.

        Args:
            max_mb (float | str | None): the size limit in MB, possibly raw user input
            include_hidden (bool): whether hidden entries are scanned
            include_binaries (bool): whether binary files are admitted

        Returns:
            TraversalOptions: the options with the limit converted to bytes
        """
        return cls(
            include_hidden=include_hidden,
            include_binaries=include_binaries,
            max_file_size_bytes=int(parse_max_mb(max_mb) * BYTES_PER_MB),
        )


def parse_max_mb(value: float | str | None) -> float:
    """Parse a megabyte limit, substituting the default for bad input.

    Args:
        value (float | str | None): the raw value

    Returns:
        float: a strictly positive number of megabytes
    """
    try:
        mb = float(str(value).strip()) if value is not None else DEFAULT_MAX_MB
    except ValueError:
        return DEFAULT_MAX_MB
    if not mb > 0 or mb == float("inf"):
        return DEFAULT_MAX_MB
    return mb


class CandidateFile(BaseModel):
    """A file discovered by a scan, with the metadata the caller displays.

    Attributes:
        path: Absolute path to the file on disk.
        rel: Path relative to the scanned root, with POSIX separators.
        size: File size in bytes.
        mtime: POSIX mtime (float seconds since epoch).
        include: Whether the persisted selection keeps this file in the digest.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute file path")
    rel: str = Field(..., description="File path relative to the scanned root")
    size: int = Field(..., ge=0, description="File size in bytes")
    mtime: float = Field(..., description="POSIX modification time (seconds)")
    include: bool = Field(default=True, description="Persisted selection state")

    @computed_field
    @property
    def last_modified(self) -> datetime:
        """Local modification time."""
        return datetime.fromtimestamp(self.mtime)  # noqa: DTZ006

    @computed_field
    @property
    def size_display(self) -> str:
        """Human-readable size."""
        return format_size(self.size)


class DigestResult(BaseModel):
    """Text produced by one digest build plus its admission counters."""

    model_config = ConfigDict(frozen=True)

    text: str
    included_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)

    @property
    def status_line(self) -> str:
        return f"Done. {self.included_count:,} files included, {self.skipped_count:,} skipped."


def format_size(size: int) -> str:
    """Format a byte count as B, KB, MB or GB with at most two decimals.

    Args:
        size (int): the byte count

    Returns:
        str: e.g. "512 B", "1.5 KB", "2 MB"
    """
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    for unit, factor in (("GB", gb), ("MB", mb), ("KB", kb)):
        if size >= factor:
            return f"{size / factor:.2f}".rstrip("0").rstrip(".") + f" {unit}"
    return f"{size} B"
