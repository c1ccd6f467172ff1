from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

import pytest

from folder_digest import renderers
from folder_digest.renderers import AttachmentRenderer, register_renderer

if TYPE_CHECKING:
    from collections.abc import Iterator


class StaticRenderer(AttachmentRenderer):
    """Renders a fixed block of text."""

    name: ClassVar[str] = "Static"

    text: str = ""

    def render(self) -> str:
        return self.text


class ExplodingRenderer(AttachmentRenderer):
    """Breaks the "render never raises" contract."""

    name: ClassVar[str] = "Exploding"

    def render(self) -> str:
        msg = "boom"
        raise RuntimeError(msg)


@pytest.fixture
def isolated_renderers() -> Iterator[dict[str, type]]:
    """Register the test renderers and restore the registry afterwards."""
    saved = dict(renderers.RENDERERS)
    renderers.clear_renderer_cache()
    register_renderer("Static")(StaticRenderer)
    register_renderer("Exploding")(ExplodingRenderer)
    yield renderers.RENDERERS
    renderers.RENDERERS.clear()
    renderers.RENDERERS.update(saved)
    renderers.clear_renderer_cache()
