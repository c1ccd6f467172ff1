"""
folder_digest: turn a folder into one pasteable text digest.

Overview
--------
`build` walks a folder, skips tool/output directories, hidden entries, large
and binary files, and concatenates the remaining files between
`--- START FILE ---` / `--- END FILE ---` markers. Files excluded with
`select` are left out, and attachments active for the folder (for instance
the tail of a log file from the last test run) are spliced before or after
the digest.

Usage
-----
    folder-digest build . --output digest.txt
    folder-digest list . --max-mb 0.5
    folder-digest select . --exclude docs/big.md
    folder-digest attach --file test.log --start-pattern "Test Run.*" --position after --activate-in .
    folder-digest detach 3f2a9c...
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from folder_digest import __version__
from folder_digest.attachments import (
    AttachmentDescriptor,
    AttachmentPosition,
    apply_attachments,
    load_descriptors_yaml,
)
from folder_digest.config import TraversalOptions
from folder_digest.exceptions import InvalidRootError, SettingsFileError
from folder_digest.file_manipulation import normalize_rel, scan_candidates
from folder_digest.logging import logger, setup_logging
from folder_digest.output_construction import build_digest
from folder_digest.renderers import LogRenderer, resolve_renderer_type
from folder_digest.settings import ENV_FILE, Settings
from folder_digest.store import UserSettings, folder_key

if TYPE_CHECKING:
    from collections.abc import Sequence


def _add_scan_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("root", type=Path, nargs="?", default=Path(), help="Folder to digest.")
    p.add_argument("--include-hidden", action="store_true", help="Include hidden files and folders.")
    p.add_argument("--include-binaries", action="store_true", help="Include binary files.")
    p.add_argument("--max-mb", type=str, default=None, help="Max file size in MB (default 1).")


def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--settings", dest="settings_file", type=Path, default=None, help="User settings JSON.")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--verbose", action="store_true", help="Log skipped files.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="folder-digest",
        description="Concatenate a folder's text files into a single digest.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build the digest and apply active attachments.")
    _add_scan_options(build)
    _add_common_options(build)
    build.add_argument("--output", type=Path, default=None, help="Output file (stdout when omitted).")
    build.add_argument("--no-selection", action="store_true", help="Ignore persisted exclusions.")
    build.add_argument(
        "--all-attachments",
        action="store_true",
        help="Apply every configured attachment, active or not.",
    )

    lst = sub.add_parser("list", help="List candidate files with their selection state.")
    _add_scan_options(lst)
    _add_common_options(lst)

    select = sub.add_parser("select", help="Exclude or re-include files, (de)activate attachments.")
    _add_scan_options(select)
    _add_common_options(select)
    select.add_argument("--exclude", action="append", default=[], help="Relative path to exclude (repeatable).")
    select.add_argument("--include", action="append", default=[], help="Relative path to re-include (repeatable).")
    select.add_argument("--activate", action="append", default=[], help="Attachment id to activate (repeatable).")
    select.add_argument("--deactivate", action="append", default=[], help="Attachment id to deactivate (repeatable).")
    select.add_argument("--prune", action="store_true", help="Drop exclusions of missing files and stale activations.")

    attach = sub.add_parser("attach", help="Configure a new attachment.")
    _add_common_options(attach)
    attach.add_argument("--type", type=str, default="LogAttachment", help="Renderer type name.")
    attach.add_argument(
        "--position",
        choices=[p.value for p in AttachmentPosition],
        default=AttachmentPosition.BEFORE.value,
        help="Splice the block before or after the digest.",
    )
    attach.add_argument("--file", type=str, default="", help="File read by the log renderer.")
    attach.add_argument("--start-pattern", type=str, default="", help="Regex of the first copied line.")
    attach.add_argument("--state", type=str, default="", help="Renderer state as JSON.")
    attach.add_argument("--from-yaml", type=Path, default=None, help="YAML file listing attachments.")
    attach.add_argument("--activate-in", type=Path, default=None, help="Activate the new attachments for this folder.")

    detach = sub.add_parser("detach", help="Remove configured attachments and their activations.")
    _add_common_options(detach)
    detach.add_argument("attachment_ids", nargs="+", metavar="ID", help="Attachment id to remove.")

    attachments = sub.add_parser("attachments", help="Show configured attachments for a folder.")
    attachments.add_argument("root", type=Path, nargs="?", default=Path(), help="Folder whose activations to show.")
    _add_common_options(attachments)

    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    args = build_parser().parse_args(argv)
    values = {k: v for k, v in vars(args).items() if v is not None}
    return Settings(**values)


def folder_of(root: Path) -> str:
    """Absolute folder path used as the key of persisted state."""
    return str(root.resolve())


def traversal_options(settings: Settings) -> TraversalOptions:
    return TraversalOptions.from_megabytes(
        settings.max_mb,
        include_hidden=settings.include_hidden,
        include_binaries=settings.include_binaries,
    )


def ensure_root(root: Path) -> None:
    if not root.is_dir():
        raise InvalidRootError(folder=root)


def run_build(settings: Settings, store: UserSettings) -> int:
    root = settings.root
    ensure_root(root)
    folder = folder_of(root)
    options = traversal_options(settings)

    allow: set[str] | None = None
    if not settings.no_selection and store.selections.get(folder_key(folder)):
        candidates = scan_candidates(root, options)
        allow = store.allow_set(folder, [c.rel for c in candidates])

    descriptors = list(store.attachments) if settings.all_attachments else store.active_attachments(folder)
    result = build_digest(str(root), options, allow)
    text = apply_attachments(result.text, descriptors)

    if settings.output:
        settings.output.write_text(text, encoding="utf-8")
        logger.info("digest_written", output=str(settings.output), chars=len(text))
    else:
        sys.stdout.write(text)
    print(result.status_line, file=sys.stderr)
    return 0


def run_list(settings: Settings, store: UserSettings) -> int:
    root = settings.root
    ensure_root(root)
    folder = folder_of(root)
    candidates = scan_candidates(
        root,
        traversal_options(settings),
        is_included=lambda rel: store.is_included(folder, rel),
    )
    for c in candidates:
        mark = "x" if c.include else " "
        print(f"[{mark}] {c.size_display:>10}  {c.last_modified:%Y-%m-%d %H:%M}  {c.rel}")
    print(f"Ready. {len(candidates):,} candidate files.", file=sys.stderr)
    return 0


def run_select(settings: Settings, store: UserSettings) -> int:
    root = settings.root
    ensure_root(root)
    folder = folder_of(root)
    store.last_folder = folder

    if settings.exclude:
        known = {normalize_rel(c.rel) for c in scan_candidates(root, traversal_options(settings))}
        for rel in settings.exclude:
            if normalize_rel(rel) not in known:
                logger.warning("exclusion_unmatched", folder=folder, path=rel)
                print(f"Warning: {rel} matches no candidate file in {folder}", file=sys.stderr)
    for rel in settings.exclude:
        store.set_included(folder, rel, include=False)
    for rel in settings.include:
        store.set_included(folder, rel, include=True)

    for attachment_id, active in [
        *((a, True) for a in settings.activate),
        *((a, False) for a in settings.deactivate),
    ]:
        if store.find_attachment(attachment_id) is None:
            logger.warning("attachment_unknown", id=attachment_id)
            print(f"Unknown attachment id: {attachment_id}", file=sys.stderr)
            continue
        store.set_attachment_active(folder, attachment_id, active=active)

    if settings.prune:
        candidates = scan_candidates(root, traversal_options(settings))
        removed = store.prune_missing(folder, [c.rel for c in candidates])
        removed += store.prune_attachment_selections()
        logger.info("selection_pruned", folder=folder, removed=removed)

    store.save(settings.settings_file)
    return 0


def _descriptor_from_options(settings: Settings) -> AttachmentDescriptor:
    position = AttachmentPosition(settings.position)
    if settings.state:
        return AttachmentDescriptor(position=position, type=settings.type, state=settings.state)
    if resolve_renderer_type(settings.type) is LogRenderer:
        renderer = LogRenderer(file_path=settings.file, start_pattern=settings.start_pattern)
        return AttachmentDescriptor.for_renderer(renderer, position)
    return AttachmentDescriptor(position=position, type=settings.type)


def run_attach(settings: Settings, store: UserSettings) -> int:
    if settings.from_yaml is not None:
        new = load_descriptors_yaml(settings.from_yaml)
    else:
        new = [_descriptor_from_options(settings)]

    store.attachments.extend(new)
    if settings.activate_in is not None:
        folder = folder_of(settings.activate_in)
        for descriptor in new:
            store.set_attachment_active(folder, descriptor.id, active=True)
    store.save(settings.settings_file)

    for descriptor in new:
        if resolve_renderer_type(descriptor.type) is None:
            print(f"Warning: type {descriptor.type!r} does not resolve to a renderer", file=sys.stderr)
        print(descriptor.id)
    return 0


def run_detach(settings: Settings, store: UserSettings) -> int:
    for attachment_id in settings.attachment_ids:
        if store.remove_attachment(attachment_id):
            logger.info("attachment_removed", id=attachment_id)
        else:
            logger.warning("attachment_unknown", id=attachment_id)
            print(f"Unknown attachment id: {attachment_id}", file=sys.stderr)
    store.save(settings.settings_file)
    return 0


def run_attachments(settings: Settings, store: UserSettings) -> int:
    folder = folder_of(settings.root)
    for descriptor in store.attachments:
        mark = "x" if store.is_attachment_active(folder, descriptor.id) else " "
        print(f"[{mark}] {descriptor.id}  {descriptor.position.value:<6}  {descriptor.type}  {descriptor.state or ''}")
    return 0


COMMANDS = {
    "build": run_build,
    "list": run_list,
    "select": run_select,
    "attach": run_attach,
    "detach": run_detach,
    "attachments": run_attachments,
}


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv(ENV_FILE)
    settings = parse_args(argv)
    if settings.log_file or settings.verbose:
        setup_logging(
            settings.log_file or None,
            level=logging.DEBUG if settings.verbose else logging.INFO,
            force=True,
        )

    store = UserSettings.load(settings.settings_file)
    try:
        return COMMANDS[settings.command](settings, store)
    except InvalidRootError as e:
        logger.error("invalid_root", folder=str(e.folder))  # noqa: TRY400
        print(f"Please choose a valid folder: {e.folder}", file=sys.stderr)
        return 2
    except SettingsFileError as e:
        logger.error("settings_file_invalid", path=str(e.path), error=e.message)  # noqa: TRY400
        print(f"Cannot load {e.path}: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
