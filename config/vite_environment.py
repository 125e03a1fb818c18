from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from django.apps import apps
from django.conf import settings
from django.template import Context, Engine
from django.utils.crypto import get_random_string
from django.utils.html import format_html
from django.utils.safestring import mark_safe

VOID_ELEMENTS = frozenset({"base", "br", "hr", "img", "input", "link", "meta", "source"})


@dataclass
class ViteEnvironment:
    """Host capabilities the Vite resolver relies on.

    ``index_root`` is the public directory that holds the build directory and
    the hot file; ``asset_url`` is the URL it is served under.
    """

    index_root: Path
    base_root: Path | None = None
    asset_url: str = "/static/"

    @classmethod
    def from_settings(cls) -> "ViteEnvironment":
        base_root = settings.VITE_BASE_ROOT
        return cls(
            index_root=Path(settings.VITE_INDEX_ROOT),
            base_root=Path(base_root) if base_root else None,
            asset_url=settings.VITE_ASSET_URL,
        )

    def render_attributes(self, attributes: Mapping[str, Any]) -> str:
        parts = []
        for name, value in attributes.items():
            if value is None or value is False:
                continue
            if value is True:
                parts.append(format_html(" {}", name))
            else:
                parts.append(format_html(' {}="{}"', name, value))
        return mark_safe("".join(parts))

    def render_tag(self, name: str, content: str, attributes: Mapping[str, Any]) -> str:
        rendered = self.render_attributes(attributes)
        if name in VOID_ELEMENTS:
            return format_html("<{}{}>", name, rendered)
        return format_html("<{}{}>{}</{}>", name, rendered, content, name)

    def build_url(self, path: str) -> str:
        if "://" in path or path.startswith("//"):
            return path

        base = self.asset_url.rstrip("/")
        joined = posixpath.join(base or "/", path.lstrip("/"))
        if "://" in joined or joined.startswith("/"):
            return joined
        return f"/{joined}"

    def file_exists(self, path: str) -> bool:
        relative = path.lstrip("/")
        roots = (self.base_root or self.index_root, self.index_root.parent)
        return any((root / relative).exists() for root in roots)

    def interpolate(self, template: str, context: Mapping[str, Any]) -> str:
        # Plain entry names are the common case; skip the template engine for them.
        if "{{" not in template and "{%" not in template:
            return template
        compiled = Engine.get_default().from_string(template)
        return compiled.render(Context(dict(context), autoescape=False))

    def random_nonce(self, length: int = 40) -> str:
        return get_random_string(length)

    def default_context(self) -> dict[str, Any]:
        return {"app": apps, "site": None, "page": None}
