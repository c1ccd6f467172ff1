from __future__ import annotations

import json
import uuid
from enum import StrEnum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from folder_digest.exceptions import SettingsFileError
from folder_digest.logging import logger
from folder_digest.renderers import (
    LEGACY_DEFAULT_TYPE,
    RENDERERS,
    LogRenderer,
    Renderer,
    deserialize_state,
    resolve_renderer_type,
    serialize_state,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

_ = Path()


class AttachmentPosition(StrEnum):
    """Where a rendered attachment is spliced relative to the digest."""

    BEFORE = auto()
    AFTER = auto()


class AttachmentDescriptor(BaseModel):
    """One configured attachment, as persisted in the user settings.

    Attributes:
        id: Stable identifier used for per-folder activation only.
        position: Whether the block goes before or after the digest.
        type: Renderer type name, resolved through the renderer registry.
        state: Renderer-specific JSON document, opaque to the composer.
        file_path: Legacy scalar from configurations predating `state`; cleared once migrated.
        start_pattern: Legacy scalar from configurations predating `state`; cleared once migrated.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        validation_alias=AliasChoices("id", "Id"),
        description="Opaque stable identifier",
    )
    position: AttachmentPosition = Field(
        default=AttachmentPosition.BEFORE,
        validation_alias=AliasChoices("position", "Position"),
    )
    type: str = Field(default=LEGACY_DEFAULT_TYPE, validation_alias=AliasChoices("type", "Type"))
    state: str | None = Field(default=None, validation_alias=AliasChoices("state", "State"))
    file_path: str | None = Field(default=None, validation_alias=AliasChoices("file_path", "FilePath"))
    start_pattern: str | None = Field(
        default=None,
        validation_alias=AliasChoices("start_pattern", "StartPattern"),
    )

    @field_validator("position", mode="before")
    @classmethod
    def _parse_position(cls, value: Any) -> Any:  # noqa: ANN401
        # Older settings stored the enum by name ("Before") or by ordinal.
        if isinstance(value, int) and not isinstance(value, bool):
            return AttachmentPosition.AFTER if value == 1 else AttachmentPosition.BEFORE
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> Any:  # noqa: ANN401
        if value is None or (isinstance(value, str) and not value.strip()):
            return LEGACY_DEFAULT_TYPE
        return value

    @field_validator("state", mode="before")
    @classmethod
    def _state_to_json(cls, value: Any) -> Any:  # noqa: ANN401
        if isinstance(value, dict):
            return json.dumps(value)
        return value

    @model_validator(mode="after")
    def _migrate_legacy_fields(self) -> AttachmentDescriptor:
        has_legacy = self.file_path is not None or self.start_pattern is not None
        if self.state is None and has_legacy and _is_log_type(self.type):
            self.state = LogRenderer(
                file_path=self.file_path or "",
                start_pattern=self.start_pattern or "",
            ).to_state()
            self.file_path = None
            self.start_pattern = None
        return self

    @classmethod
    def for_renderer(
        cls,
        renderer: Renderer,
        position: AttachmentPosition = AttachmentPosition.BEFORE,
    ) -> AttachmentDescriptor:
        """Describe an existing renderer instance so it can be persisted.

        Args:
            renderer (Renderer): the configured renderer
            position (AttachmentPosition): where its block goes

        Returns:
            AttachmentDescriptor: a descriptor with a fresh id and the renderer's state
        """
        return cls(position=position, type=type_name_for(type(renderer)), state=serialize_state(renderer))


def _is_log_type(type_name: str) -> bool:
    return type_name == LEGACY_DEFAULT_TYPE or resolve_renderer_type(type_name) is LogRenderer


def type_name_for(cls: type) -> str:
    """Return the name under which `cls` should be persisted.

    Registered renderers use their first registered key; others use their
    fully qualified `module:Class` identifier.
    """
    for key, registered in RENDERERS.items():
        if registered is cls:
            return key
    return f"{cls.__module__}:{cls.__qualname__}"


def create_renderer(descriptor: AttachmentDescriptor) -> Renderer | None:
    """Instantiate and hydrate the renderer a descriptor points at.

    A valid `state` is authoritative. When it is missing or fails to
    deserialize, the renderer is default-constructed, and a default log
    renderer takes its file and pattern from the legacy scalar fields.

    Args:
        descriptor (AttachmentDescriptor): the configured attachment

    Returns:
        Renderer | None: the renderer, or None when the type cannot be resolved
            or constructed
    """
    cls = resolve_renderer_type(descriptor.type)
    if cls is None and descriptor.type == LEGACY_DEFAULT_TYPE:
        cls = LogRenderer
    if cls is None:
        logger.warning("attachment_type_unresolved", id=descriptor.id, type=descriptor.type)
        return None

    if descriptor.state:
        try:
            return deserialize_state(cls, descriptor.state)
        except Exception as e:  # noqa: BLE001
            logger.warning("attachment_state_invalid", id=descriptor.id, type=descriptor.type, error=str(e))

    try:
        instance = cls()
    except Exception as e:  # noqa: BLE001
        logger.warning("attachment_construct_failed", id=descriptor.id, type=descriptor.type, error=str(e))
        return None

    if isinstance(instance, LogRenderer):
        if descriptor.file_path is not None:
            instance.file_path = descriptor.file_path
        if descriptor.start_pattern is not None:
            instance.start_pattern = descriptor.start_pattern
    return instance


def render_attachment(descriptor: AttachmentDescriptor) -> str:
    """Render one descriptor, returning an empty string on any failure."""
    renderer = create_renderer(descriptor)
    if renderer is None:
        return ""
    try:
        text = renderer.render()
    except Exception as e:  # noqa: BLE001
        logger.warning("attachment_render_failed", id=descriptor.id, type=descriptor.type, error=str(e))
        return ""
    return text if isinstance(text, str) else ""


def apply_attachments(base_digest: str | None, descriptors: Sequence[AttachmentDescriptor] | None) -> str:
    """Splice rendered attachments around a digest.

    Blocks with position `before` are concatenated, in configured order, ahead
    of the digest; `after` blocks follow it, separated by a single newline when
    the text before them does not already end with one. Unresolvable, failing
    or blank attachments contribute nothing.

    Args:
        base_digest (str | None): the digest text
        descriptors (Sequence[AttachmentDescriptor] | None): active attachments, in order

    Returns:
        str: the final text; the digest unchanged when there are no descriptors
    """
    if not descriptors:
        return base_digest or ""

    before: list[str] = []
    after: list[str] = []
    for descriptor in descriptors:
        if descriptor is None:
            continue
        text = render_attachment(descriptor)
        if not text.strip():
            continue
        if descriptor.position is AttachmentPosition.BEFORE:
            before.append(text)
        else:
            after.append(text)

    out = "".join(before) + (base_digest or "")
    if after:
        if out and not out.endswith("\n"):
            out += "\n"
        out += "".join(after)
    return out


def load_descriptors_yaml(path: Path) -> list[AttachmentDescriptor]:
    """Load attachment descriptors from a YAML file.

    The file holds a list of mappings (or a mapping with an `attachments`
    list). A `state` given as a mapping is stored as its JSON document.

    Args:
        path (Path): the YAML file

    Raises:
        SettingsFileError: if the file cannot be read, parsed or validated

    Returns:
        list[AttachmentDescriptor]: the descriptors, in file order
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    except (OSError, yaml.YAMLError) as e:
        raise SettingsFileError(path=path, message=str(e)) from e
    if isinstance(data, dict):
        data = data.get("attachments", [])
    if not isinstance(data, list):
        raise SettingsFileError(path=path, message="expected a list of attachments")
    try:
        return [AttachmentDescriptor.model_validate(item) for item in data]
    except ValidationError as e:
        raise SettingsFileError(path=path, message=str(e)) from e
