"""Attachment renderers and the registry that resolves them by type name.

A renderer is any class exposing a `name` and a `render() -> str` method whose
output is a self-delimited block. Renderers living in this package register
themselves with `register_renderer`; third-party packages can do the same at
import time, or publish classes through the `folder_digest.renderers` entry
point group.
"""

from __future__ import annotations

import importlib
import io
import json
import re
from importlib.metadata import entry_points
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from folder_digest.file_manipulation import detect_bom_encoding
from folder_digest.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

ENTRY_POINT_GROUP = "folder_digest.renderers"
LEGACY_DEFAULT_TYPE = "LogAttachment"


class Renderer(Protocol):
    """Capability every attachment renderer satisfies."""

    @property
    def name(self) -> str: ...

    def render(self) -> str: ...


RENDERERS: dict[str, type[Renderer]] = {}
_RESOLVED: dict[str, type[Renderer] | None] = {}
_ENTRY_POINT_RENDERERS: list[type[Renderer]] | None = None


def is_renderer_type(obj: object) -> bool:
    """Check whether `obj` is a class that structurally satisfies `Renderer`.

    Pydantic fields are not class attributes, so a `name` field declared on a
    model counts as well.

    Args:
        obj (object): the candidate

    Returns:
        bool: True if `obj` is a class with a `name` and a callable `render`
    """
    if not isinstance(obj, type):
        return False
    has_name = hasattr(obj, "name") or "name" in getattr(obj, "model_fields", {})
    return has_name and callable(getattr(obj, "render", None))


def register_renderer(
    key: str | list[str],
) -> Callable[[type[Renderer]], type[Renderer]]:
    """Class decorator registering a renderer under one or more type names.

    Registration clears the resolution cache so names that previously failed
    to resolve are looked up again.

    Args:
        key (str | list[str]): the type name(s) persisted in attachment descriptors

    Raises:
        TypeError: if the decorated class is not a renderer

    Returns:
        Callable[[type[Renderer]], type[Renderer]]: the decorator, returning the class unchanged
    """

    def decorator(cls: type[Renderer]) -> type[Renderer]:
        if not is_renderer_type(cls):
            msg = f"{cls!r} does not expose `name` and `render()`"
            raise TypeError(msg)
        for k in [key] if isinstance(key, str) else key:
            RENDERERS[k] = cls
        _RESOLVED.clear()
        return cls

    return decorator


def clear_renderer_cache() -> None:
    """Forget memoized resolutions and loaded entry points."""
    global _ENTRY_POINT_RENDERERS  # noqa: PLW0603
    _RESOLVED.clear()
    _ENTRY_POINT_RENDERERS = None


def _load_entry_point_renderers() -> list[type[Renderer]]:
    global _ENTRY_POINT_RENDERERS  # noqa: PLW0603
    if _ENTRY_POINT_RENDERERS is None:
        found: list[type[Renderer]] = []
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
            except Exception as e:  # noqa: BLE001
                logger.warning("renderer_entry_point_failed", entry_point=ep.name, error=str(e))
                continue
            if is_renderer_type(obj):
                found.append(obj)
        _ENTRY_POINT_RENDERERS = found
    return _ENTRY_POINT_RENDERERS


def _import_qualified(type_name: str) -> object | None:
    if ":" in type_name:
        module_name, _, attr = type_name.partition(":")
    elif "." in type_name:
        module_name, _, attr = type_name.rpartition(".")
    else:
        return None
    if not module_name or not attr:
        return None
    try:
        module = importlib.import_module(module_name)
    except Exception as e:  # noqa: BLE001
        logger.debug("renderer_import_failed", type_name=type_name, error=str(e))
        return None
    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            return None
    return obj


def _simple_names(key: str | None, cls: type[Renderer]) -> set[str]:
    names = {cls.__name__.casefold()}
    if key:
        names.add(key.casefold())
    declared = getattr(cls, "name", None)
    if isinstance(declared, str):
        names.add(declared.casefold())
    return names


def _scan_known(type_name: str) -> type[Renderer] | None:
    wanted = type_name.casefold()
    known: Iterable[tuple[str | None, type[Renderer]]] = [
        *RENDERERS.items(),
        *((None, cls) for cls in _load_entry_point_renderers()),
    ]
    for key, cls in known:
        if wanted in _simple_names(key, cls):
            return cls
    return None


def resolve_renderer_type(type_name: str | None) -> type[Renderer] | None:
    """Resolve a persisted type name to a renderer class.

    Lookup order: the name as a registered key, the name as a fully qualified
    `module:Class` or `module.Class` identifier, then a case-insensitive scan
    of every known renderer by class name, registered key or declared `name`.
    Results, including misses, are memoized until the next registration.

    Args:
        type_name (str | None): the name stored in an attachment descriptor

    Returns:
        type[Renderer] | None: the renderer class, or None when nothing matches
    """
    name = (type_name or "").strip()
    if not name:
        return None
    if name in _RESOLVED:
        return _RESOLVED[name]

    resolved: type[Renderer] | None = RENDERERS.get(name)
    if resolved is None:
        candidate = _import_qualified(name)
        if is_renderer_type(candidate):
            resolved = candidate  # type: ignore[assignment]
    if resolved is None:
        resolved = _scan_known(name)

    if resolved is None:
        logger.debug("renderer_unresolved", type_name=name)
    _RESOLVED[name] = resolved
    return resolved


def serialize_state(renderer: Renderer) -> str:
    """Serialize a renderer's configuration into an opaque JSON document.

    Returns:
        str: the state, via `to_state()` when the renderer provides it
    """
    to_state = getattr(renderer, "to_state", None)
    if callable(to_state):
        return to_state()
    return json.dumps({k: v for k, v in vars(renderer).items() if not k.startswith("_")})


def deserialize_state(cls: type[Renderer], state: str) -> Renderer:
    """Build a renderer instance from a state produced by `serialize_state`.

    Raises:
        ValueError: when the state is malformed or does not fit `cls`
            (pydantic's ValidationError is a ValueError)
        TypeError: when the state keys do not match the constructor

    Returns:
        Renderer: a fresh instance of `cls`
    """
    from_state = getattr(cls, "from_state", None)
    if callable(from_state):
        return from_state(state)
    data = json.loads(state)
    if not isinstance(data, dict):
        msg = f"state for {cls.__name__} must be a JSON object"
        raise TypeError(msg)
    return cls(**data)


class AttachmentRenderer(BaseModel):
    """Convenience base for renderers whose state is a pydantic model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: ClassVar[str] = "Attachment"

    def render(self) -> str:
        raise NotImplementedError

    def to_state(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_state(cls, state: str) -> AttachmentRenderer:
        return cls.model_validate_json(state)


@register_renderer([LEGACY_DEFAULT_TYPE, "log"])
class LogRenderer(AttachmentRenderer):
    """Attach a log file, from the first line matching `start_pattern` to the end.

    The block is wrapped in `--- START LogAttachment <path> ---` and
    `--- END LogAttachment <path> ---` markers. Problems (missing file, invalid
    pattern, read failure, no match) are reported as a single line inside the
    block; `render` never raises.
    """

    name: ClassVar[str] = LEGACY_DEFAULT_TYPE

    file_path: str = Field(default="", validation_alias=AliasChoices("file_path", "FilePath", "filePath"))
    start_pattern: str = Field(
        default="",
        validation_alias=AliasChoices("start_pattern", "StartPattern", "startPattern"),
    )

    def render(self) -> str:
        out = io.StringIO()
        out.write(f"--- START {self.name} {self.file_path} ---\n")
        self._write_body(out)
        out.write(f"--- END {self.name} {self.file_path} ---\n")
        return out.getvalue()

    def _write_body(self, out: io.StringIO) -> None:
        path = Path(self.file_path.strip()) if self.file_path.strip() else None
        if path is None or not path.is_file():
            out.write("(File not found.)\n")
            return

        regex: re.Pattern[str] | None = None
        if self.start_pattern.strip():
            try:
                regex = re.compile(self.start_pattern)
            except re.error as e:
                out.write(f"(Invalid regex '{self.start_pattern}': {e})\n")
                return

        matched = regex is None
        try:
            with path.open("rb") as raw:
                encoding = detect_bom_encoding(raw.read(4))
                raw.seek(0)
                with io.TextIOWrapper(raw, encoding=encoding, errors="replace") as reader:
                    for line in reader:
                        if not matched and regex is not None and regex.search(line.removesuffix("\n")):
                            matched = True
                        if matched:
                            out.write(line if line.endswith("\n") else line + "\n")
        except (OSError, UnicodeError, ValueError) as e:
            logger.warning("log_attachment_read_failed", path=self.file_path, error=str(e))
            out.write(f"(Error reading file: {e})\n")
            return

        if not matched:
            out.write(f"(No lines matched '{self.start_pattern}'.)\n")
