from __future__ import annotations

import io
import os
from datetime import datetime
from enum import StrEnum, auto
from pathlib import Path
from typing import TYPE_CHECKING

from folder_digest.config import (
    DIGEST_TITLE,
    NO_FILES_MESSAGE,
    TIMESTAMP_FORMAT,
    DigestResult,
    TraversalOptions,
)
from folder_digest.exceptions import DigestCancelledError
from folder_digest.file_manipulation import (
    enumerate_files,
    is_binary,
    normalize_rel,
    read_text_content,
    relpath,
)
from folder_digest.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from threading import Event


class Admission(StrEnum):
    """Outcome of the admission filter for one candidate, in check order."""

    INCLUDED = auto()
    UNREADABLE = auto()
    TOO_LARGE = auto()
    BINARY = auto()
    NOT_SELECTED = auto()


def build_allow_keys(allow_set: Iterable[str] | None) -> frozenset[str] | None:
    """Normalize an allow-set into case-insensitive, separator-agnostic keys.

    Returns:
        frozenset[str] | None: the keys, or None when no allow-set was supplied
    """
    if allow_set is None:
        return None
    return frozenset(normalize_rel(p) for p in allow_set)


def admit_candidate(
    path: Path,
    rel: str,
    options: TraversalOptions,
    allow_keys: frozenset[str] | None,
) -> tuple[Admission, int]:
    """Apply the admission checks to one candidate; the first failing check wins.

    Args:
        path (Path): absolute path of the candidate
        rel (str): its root-relative path
        options (TraversalOptions): the scan options
        allow_keys (frozenset[str] | None): normalized allow-set, if any

    Returns:
        tuple[Admission, int]: the decision and the file size (0 when unreadable)
    """
    try:
        size = path.stat().st_size
    except OSError:
        return Admission.UNREADABLE, 0
    if size > options.max_file_size_bytes:
        return Admission.TOO_LARGE, size
    if not options.include_binaries and is_binary(path):
        return Admission.BINARY, size
    if allow_keys is not None and normalize_rel(rel) not in allow_keys:
        return Admission.NOT_SELECTED, size
    return Admission.INCLUDED, size


def write_file_block(out: io.StringIO, rel: str, size: int, content: str) -> None:
    """Write one delimited file block of the digest."""
    out.write(f"--- START FILE: {rel} ({size} bytes) ---\n")
    out.write(content)
    if not content.endswith("\n"):
        out.write("\n")
    out.write(f"--- END FILE: {rel} ---\n")
    out.write("\n")


def build_digest(
    root: str | Path,
    options: TraversalOptions | None = None,
    allow_set: Iterable[str] | None = None,
    *,
    cancel: Event | None = None,
    generated_at: datetime | None = None,
) -> DigestResult:
    """Build the plain-text digest of every admitted file under `root`.

    The layout is a `# Directory Digest` header with `Root:` and `Generated:`
    lines, then one `--- START FILE ---` / `--- END FILE ---` block per
    included file in traversal order. Files skipped by the walker (hidden,
    unreadable attributes) and by the admission checks are only counted.

    Args:
        root (str | Path): the directory to digest, written verbatim in the header
        options (TraversalOptions | None): scan options; defaults when omitted
        allow_set (Iterable[str] | None): relative paths allowed into the digest,
            matched case-insensitively; when None every admissible file is included
        cancel (Event | None): checked between candidates; when set the build
            stops with `DigestCancelledError`
        generated_at (datetime | None): timestamp for the header; now when omitted

    Raises:
        DigestCancelledError: if `cancel` is set during the walk

    Returns:
        DigestResult: the digest text with included and skipped counts
    """
    options = options or TraversalOptions()
    allow_keys = build_allow_keys(allow_set)
    base = Path(os.path.abspath(root))  # noqa: PTH100
    stamp = (generated_at or datetime.now()).strftime(TIMESTAMP_FORMAT)  # noqa: DTZ005

    included = 0
    skipped = 0

    def count_skip(path: Path) -> None:  # noqa: ARG001
        nonlocal skipped
        skipped += 1

    out = io.StringIO()
    out.write(f"{DIGEST_TITLE}\n")
    out.write(f"Root: {root}\n")
    out.write(f"Generated: {stamp}\n")
    out.write("\n")

    for path in enumerate_files(base, options.include_hidden, on_skip=count_skip):
        if cancel is not None and cancel.is_set():
            logger.info("digest_cancelled", root=str(root), included=included, skipped=skipped)
            raise DigestCancelledError(processed=included + skipped)

        rel = relpath(path, base)
        decision, size = admit_candidate(path, rel, options, allow_keys)
        if decision is not Admission.INCLUDED:
            logger.debug("file_skipped", path=rel, reason=str(decision))
            skipped += 1
            continue

        try:
            content = read_text_content(path)
        except OSError as e:
            logger.debug("file_skipped", path=rel, reason="read_error", error=str(e))
            skipped += 1
            continue

        write_file_block(out, rel, size, content)
        included += 1

    if included == 0:
        out.write(f"{NO_FILES_MESSAGE}\n")

    logger.info("digest_built", root=str(root), included=included, skipped=skipped)
    return DigestResult(text=out.getvalue(), included_count=included, skipped_count=skipped)
