from __future__ import annotations

import codecs
import os
import stat
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from folder_digest.config import (
    BINARY_EXTENSIONS,
    CONTROL_CHAR_THRESHOLD,
    SKIP_DIR_NAMES,
    SNIFF_BYTES,
    CandidateFile,
    TraversalOptions,
)
from folder_digest.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    SkipCallback = Callable[[Path], None]

# Longest BOM first: the UTF-32 LE mark starts with the UTF-16 LE one.
_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)
_WHITESPACE_CONTROLS = frozenset({9, 10, 13})


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return str(path.relative_to(root)).replace("\\", "/")
    except ValueError:
        return str(path)


def normalize_rel(rel: str) -> str:
    """Normalize a relative path into the key used for selection lookups.

    Separators are unified, `.` segments are dropped and case is folded, so
    exclusions written as `Src\\App.py` or `./src/app.py` match a scanned
    `src/app.py`.

    Args:
        rel (str): a root-relative path using either separator convention

    Returns:
        str: the lookup key
    """
    key = PurePosixPath(rel.strip().replace("\\", "/")).as_posix().strip("/")
    return "" if key == "." else key.casefold()


def is_hidden(path: Path, st: os.stat_result | None = None) -> bool:
    """Check whether an entry is hidden.

    Dot-prefixed names are hidden everywhere; on Windows the hidden attribute
    bit counts as well.

    Args:
        path (Path): the entry to test
        st (os.stat_result | None): an already-read stat result, if any

    Returns:
        bool: True if the entry is hidden
    """
    if path.name.startswith("."):
        return True
    attrs = getattr(st, "st_file_attributes", 0) if st is not None else 0
    return bool(attrs & getattr(stat, "FILE_ATTRIBUTE_HIDDEN", 0))


def has_binary_extension(path: Path) -> bool:
    """Check the extension against the known binary formats, ignoring case."""
    return path.suffix.lower() in BINARY_EXTENSIONS


def looks_binary(path: Path) -> bool:
    """Sniff the first `SNIFF_BYTES` bytes of a file for binary content.

    A NUL byte is decisive. Otherwise the file is binary when control bytes
    other than tab, LF and CR exceed `CONTROL_CHAR_THRESHOLD` of the bytes read.
    An empty file is text. An unreadable file is reported as binary.

    Args:
        path (Path): the file to sniff

    Returns:
        bool: True if the content looks binary
    """
    try:
        with path.open("rb") as f:
            chunk = f.read(SNIFF_BYTES)
    except OSError:
        return True
    if not chunk:
        return False
    if b"\x00" in chunk:
        return True
    control = sum(1 for b in chunk if b < 32 and b not in _WHITESPACE_CONTROLS)  # noqa: PLR2004
    return control > len(chunk) * CONTROL_CHAR_THRESHOLD


def is_binary(path: Path) -> bool:
    """Classify a file as binary, by extension first and then by content.

    Args:
        path (Path): the file to classify

    Returns:
        bool: True if the file should be treated as non-text. Never raises.
    """
    return has_binary_extension(path) or looks_binary(path)


def _list_directory(directory: Path) -> list[os.DirEntry[str]]:
    try:
        with os.scandir(directory) as it:
            return list(it)
    except OSError as e:
        logger.debug("directory_unreadable", directory=str(directory), error=str(e))
        return []


def enumerate_files(
    root: str | Path,
    include_hidden: bool,  # noqa: FBT001
    *,
    on_skip: SkipCallback | None = None,
) -> Iterator[Path]:
    """Lazily walk `root` depth-first and yield candidate file paths.

    The walk uses an explicit stack, so deep trees cannot overflow the
    interpreter stack. Directories named in `SKIP_DIR_NAMES`, symbolic links to
    directories, and (unless `include_hidden`) hidden directories are pruned.
    Unlistable directories are treated as empty. Hidden files (unless
    `include_hidden`) and files whose attributes cannot be read are reported
    through `on_skip` and not yielded.

    The order follows the stack discipline and is not sorted.

    Args:
        root (str | Path): the directory to walk
        include_hidden (bool): whether hidden entries are walked and yielded
        on_skip (SkipCallback | None): called with each file skipped here

    Yields:
        Path: absolute paths of candidate files
    """
    stack: list[Path] = [Path(os.path.abspath(root))]  # noqa: PTH100
    while stack:
        directory = stack.pop()
        entries = _list_directory(directory)

        for entry in entries:
            try:
                if not entry.is_dir():
                    continue
                path = Path(entry.path)
                if entry.name.casefold() in SKIP_DIR_NAMES or entry.is_symlink():
                    continue
                if not include_hidden and is_hidden(path, entry.stat()):
                    continue
            except OSError:
                continue
            stack.append(path)

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir():
                    continue
                st = entry.stat()
                if not stat.S_ISREG(st.st_mode):
                    continue
                hidden = is_hidden(path, st)
            except OSError as e:
                logger.debug("file_attributes_unreadable", path=str(path), error=str(e))
                if on_skip is not None:
                    on_skip(path)
                continue
            if hidden and not include_hidden:
                if on_skip is not None:
                    on_skip(path)
                continue
            yield path


def detect_bom_encoding(head: bytes, default: str = "utf-8") -> str:
    """Pick a codec from a leading byte-order mark.

    Args:
        head (bytes): the first bytes of the content (at least 4 for UTF-32)
        default (str): the codec returned when no mark is present

    Returns:
        str: a codec name whose decoder also strips the mark
    """
    for bom, encoding in _BOMS:
        if head.startswith(bom):
            return encoding
    return default


def decode_text(data: bytes) -> str:
    """Decode file bytes, honouring a BOM and never failing on bad sequences.

    Args:
        data (bytes): the raw file content

    Returns:
        str: the decoded text; invalid sequences become U+FFFD
    """
    encoding = detect_bom_encoding(data[:4])
    try:
        return data.decode(encoding)
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="replace")


def read_text_content(path: Path) -> str:
    """Read a whole file as text.

    Raises:
        OSError: when the file cannot be opened or read

    Returns:
        str: the decoded content
    """
    with path.open("rb") as f:
        data = f.read()
    return decode_text(data)


def scan_candidates(
    root: str | Path,
    options: TraversalOptions,
    *,
    is_included: Callable[[str], bool] | None = None,
) -> list[CandidateFile]:
    """List the files a digest build would consider, sorted by relative path.

    Mirrors the size and binary filters of the digest build so a caller can
    present the same candidates the build will see, together with the
    persisted selection state.

    Args:
        root (str | Path): the directory to scan
        options (TraversalOptions): the same options passed to the build
        is_included (Callable[[str], bool] | None): selection lookup by relative
            path; every file is included when omitted

    Returns:
        list[CandidateFile]: candidates sorted case-insensitively by `rel`
    """
    base = Path(os.path.abspath(root))  # noqa: PTH100
    out: list[CandidateFile] = []
    for path in enumerate_files(base, options.include_hidden):
        try:
            st = path.stat()
        except OSError:
            continue
        if st.st_size > options.max_file_size_bytes:
            continue
        if not options.include_binaries and is_binary(path):
            continue
        rel = relpath(path, base)
        out.append(
            CandidateFile(
                path=path,
                rel=rel,
                size=st.st_size,
                mtime=st.st_mtime,
                include=is_included(rel) if is_included is not None else True,
            ),
        )
    return sorted(out, key=lambda c: c.rel.lower())
