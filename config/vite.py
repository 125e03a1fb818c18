from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from copy import copy as shallow_copy
from functools import lru_cache
from pathlib import Path
from typing import Any

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver
from django.utils.module_loading import import_string
from django.utils.safestring import mark_safe
from opentelemetry import trace

from config.vite_environment import ViteEnvironment

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("vite.assets")

DEV_CLIENT_ENTRY = "@vite/client"
REACT_REFRESH_ENTRY = "@react-refresh"

STYLE_PATH_RE = re.compile(r"\.(css|less|sass|scss|styl|stylus|pcss|postcss)$")

REACT_REFRESH_TEMPLATE = """<script type="module"{attributes}>
    import RefreshRuntime from '{runtime}'
    RefreshRuntime.injectIntoGlobalHook(window)
    window.$RefreshReg$ = () => {{}}
    window.$RefreshSig$ = () => (type) => type
    window.__vite_plugin_react_preamble_installed__ = true
</script>"""

Chunk = Mapping[str, Any]
Manifest = Mapping[str, Chunk]
AttributeResolver = Callable[[str, str, Chunk, Manifest], Mapping[str, Any]]


class ViteManifestError(RuntimeError):
    """Base error for problems resolving Vite assets."""


class ViteManifestNotFound(ViteManifestError):
    pass


class ViteAssetNotFound(ViteManifestError):
    def __init__(self, entry: str):
        super().__init__(f"Unable to locate file in Vite manifest: {entry}")
        self.entry = entry


@tracer.start_as_current_span("VITE read_manifest")
def _read_manifest(path: Path) -> dict[str, dict]:
    with path.open("r", encoding="utf-8") as manifest_file:
        return json.load(manifest_file)


class ViteManifestCache:
    """Parsed manifests keyed by path, kept until explicitly cleared.

    Two callers populating the same path at once both store identical content,
    so no locking is done.
    """

    def __init__(self) -> None:
        self._manifests: dict[str, dict[str, dict]] = {}

    def __contains__(self, path: object) -> bool:
        return str(path) in self._manifests

    def __len__(self) -> int:
        return len(self._manifests)

    def load(self, path: Path) -> dict[str, dict]:
        key = str(path)
        if key not in self._manifests:
            if not path.is_file():
                raise ViteManifestNotFound(f"Vite manifest not found at: {path}")

            manifest = _read_manifest(path)
            logger.debug("Loaded Vite manifest %s with %d entries", path, len(manifest))
            self._manifests[key] = manifest

        return self._manifests[key]

    def clear(self) -> None:
        self._manifests.clear()


manifest_cache = ViteManifestCache()


def clear_manifest_cache() -> None:
    manifest_cache.clear()


def _constant_resolver(attributes: Mapping[str, Any]) -> AttributeResolver:
    attributes = dict(attributes)
    return lambda *args: attributes


def _apply_resolvers(
    attributes: dict[str, Any],
    resolvers: Iterable[AttributeResolver],
    src: str,
    url: str,
    chunk: Chunk,
    manifest: Manifest,
) -> dict[str, Any]:
    for resolver in resolvers:
        attributes = {**attributes, **resolver(src, url, chunk, manifest)}
    return attributes


class Vite:
    """Turns Vite entry points into script, stylesheet and preload tags.

    Configuration methods return the instance so they can be chained::

        Vite(environment).use_nonce().use_build_directory("admin")("src/admin.ts")
    """

    # ``{{ vite }}`` renders the configured entries instead of calling the instance.
    do_not_call_in_templates = True

    def __init__(
        self,
        environment: ViteEnvironment | None = None,
        manifests: ViteManifestCache | None = None,
    ) -> None:
        self.environment = environment or ViteEnvironment.from_settings()
        self.manifests = manifests if manifests is not None else manifest_cache

        self._nonce: str | None = None
        self._integrity: str | bool = "integrity"
        self._entries: list[str] = []
        self._hot_file: Path | None = None
        self._build_directory = "build"
        self._manifest = "manifest.json"
        self._preload_tag_attributes_resolvers: list[AttributeResolver] = []
        self._script_tag_attributes_resolvers: list[AttributeResolver] = []
        self._style_tag_attributes_resolvers: list[AttributeResolver] = []
        self._preloaded_assets: dict[str, str] = {}

    @classmethod
    def from_settings(cls) -> "Vite":
        vite = (
            cls(ViteEnvironment.from_settings())
            .use_build_directory(settings.VITE_BUILD_DIRECTORY)
            .use_manifest(settings.VITE_MANIFEST)
            .use_integrity(settings.VITE_INTEGRITY)
            .with_entries(settings.VITE_ENTRIES)
        )

        if settings.VITE_HOT_FILE:
            vite.use_hot_file(settings.VITE_HOT_FILE)

        if settings.VITE_NONCE:
            vite.use_nonce(None if settings.VITE_NONCE is True else settings.VITE_NONCE)

        for resolver in _configured_resolvers(settings.VITE_SCRIPT_TAG_ATTRIBUTES):
            vite.use_script_tag_attributes(resolver)
        for resolver in _configured_resolvers(settings.VITE_STYLE_TAG_ATTRIBUTES):
            vite.use_style_tag_attributes(resolver)
        for resolver in _configured_resolvers(settings.VITE_PRELOAD_TAG_ATTRIBUTES):
            vite.use_preload_tag_attributes(resolver)

        return vite

    def __call__(
        self,
        entries: str | Iterable[str] | None,
        build_directory: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        return self.resolve(entries, build_directory, context)

    def resolve(
        self,
        entries: str | Iterable[str] | None,
        build_directory: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        entries, exists = self._prepare_entries(entries, context)

        if self.is_running_hot():
            logger.debug("Vite dev server running; resolving %d entries against it", len(entries))
            return "".join(
                self._make_tag(entry, self.hot_asset(entry))
                for entry in [DEV_CLIENT_ENTRY, *entries]
            )

        build_directory = build_directory or self._build_directory
        manifest = self.manifest(build_directory)

        preloads: dict[str, str] = {}
        assets: dict[str, str] = {}

        for entry in entries:
            try:
                chunk = self.chunk(manifest, entry)
            except ViteAssetNotFound:
                if entry not in exists:
                    raise
                logger.debug("Skipping %s: exists on disk but not in the Vite manifest", entry)
                continue

            file = chunk["file"]
            args = (entry, self._url(build_directory, file), chunk, manifest)

            if file not in preloads:
                preloads[file] = self._make_preload_tag(*args)

            if file not in assets:
                assets[file] = self._make_tag(*args)

            self._resolve_imports(chunk, build_directory, manifest, assets, preloads)
            self._resolve_css(chunk, build_directory, manifest, assets, preloads)

        return "".join(self._styles_last(preloads)) + "".join(self._styles_last(assets))

    def _prepare_entries(
        self,
        entries: str | Iterable[str] | None,
        context: Mapping[str, Any] | None,
    ) -> tuple[list[str], set[str]]:
        if entries is None:
            entries = []
        elif isinstance(entries, str):
            entries = [entries]

        template_context = {**self.environment.default_context(), **(context or {})}

        prepared: list[str] = []
        exists: set[str] = set()

        for value in entries:
            query = self.environment.interpolate(value, template_context)

            optional = query.startswith("@")
            if optional:
                query = query[1:]

            if optional or query != value:
                if not self.environment.file_exists(query):
                    logger.debug("Dropping Vite entry %s: %s does not exist", value, query)
                    continue
                exists.add(query)

            prepared.append(query)

        return prepared, exists

    def _styles_last(self, tags: dict[str, str]) -> list[str]:
        ordered = sorted(tags.items(), key=lambda item: self.is_style_path(item[0]))
        return [tag for _, tag in ordered]

    def _url(self, build_directory: str, file: str) -> str:
        return self.environment.build_url(f"{build_directory}/{file}")

    def _resolve_imports(
        self,
        chunk: Chunk,
        build_directory: str,
        manifest: Manifest,
        assets: dict[str, str],
        preloads: dict[str, str],
    ) -> None:
        for key in chunk.get("imports", []):
            imported = self.chunk(manifest, key)
            file = imported["file"]

            if file not in preloads:
                preloads[file] = self._make_preload_tag(
                    key, self._url(build_directory, file), imported, manifest
                )

            self._resolve_css(imported, build_directory, manifest, assets, preloads)

    def _resolve_css(
        self,
        chunk: Chunk,
        build_directory: str,
        manifest: Manifest,
        assets: dict[str, str],
        preloads: dict[str, str],
    ) -> None:
        for path in chunk.get("css", []):
            key, css_chunk = next(
                ((key, value) for key, value in manifest.items() if value.get("file") == path),
                (path, {"file": path}),
            )
            file = css_chunk["file"]
            args = (key, self._url(build_directory, file), css_chunk, manifest)

            if file not in assets:
                assets[file] = self._make_tag(*args)

            if file not in preloads:
                preloads[file] = self._make_preload_tag(*args)

    def chunk(self, manifest: Manifest, key: str) -> Chunk:
        if key not in manifest:
            raise ViteAssetNotFound(key)
        return manifest[key]

    def manifest(self, build_directory: str | None = None) -> Manifest:
        return self.manifests.load(self.manifest_path(build_directory or self._build_directory))

    def manifest_path(self, build_directory: str | None = None) -> Path:
        # Joined into a plain str; pathlib rejects str subclasses such as SafeString.
        return self.environment.index_root / f"{build_directory or self._build_directory}/{self._manifest}"

    def _make_tag(self, src: str, url: str, chunk: Chunk | None = None, manifest: Manifest | None = None) -> str:
        chunk = chunk or {}
        manifest = manifest or {}

        if self.is_style_path(url):
            return self._make_style_tag(url, self._resolve_style_tag_attributes(src, url, chunk, manifest))

        return self._make_script_tag(url, self._resolve_script_tag_attributes(src, url, chunk, manifest))

    def _make_script_tag(self, url: str, attributes: Mapping[str, Any]) -> str:
        defaults = {"type": "module", "src": url, "nonce": self.nonce()}
        return self.environment.render_tag("script", "", {**defaults, **attributes})

    def _make_style_tag(self, url: str, attributes: Mapping[str, Any]) -> str:
        defaults = {"rel": "stylesheet", "href": url, "nonce": self.nonce()}
        return self.environment.render_tag("link", "", {**defaults, **attributes})

    def _make_preload_tag(self, src: str, url: str, chunk: Chunk, manifest: Manifest) -> str:
        attributes = self._resolve_preload_tag_attributes(src, url, chunk, manifest)

        if url not in self._preloaded_assets:
            self._preloaded_assets[url] = self.environment.render_tag("link", "", attributes)

        return self._preloaded_assets[url]

    def _integrity_attributes(self, chunk: Chunk) -> dict[str, Any]:
        if self._integrity is False:
            return {}
        return {"integrity": chunk.get(self._integrity, False)}

    def _resolve_script_tag_attributes(self, src: str, url: str, chunk: Chunk, manifest: Manifest) -> dict[str, Any]:
        return _apply_resolvers(
            self._integrity_attributes(chunk),
            self._script_tag_attributes_resolvers,
            src, url, chunk, manifest,
        )

    def _resolve_style_tag_attributes(self, src: str, url: str, chunk: Chunk, manifest: Manifest) -> dict[str, Any]:
        return _apply_resolvers(
            self._integrity_attributes(chunk),
            self._style_tag_attributes_resolvers,
            src, url, chunk, manifest,
        )

    def _resolve_preload_tag_attributes(self, src: str, url: str, chunk: Chunk, manifest: Manifest) -> dict[str, Any]:
        if self.is_style_path(url):
            style = self._resolve_style_tag_attributes(src, url, chunk, manifest)
            attributes = {
                "rel": "preload",
                "as": "style",
                "href": url,
                "nonce": self.nonce(),
                "crossorigin": style.get("crossorigin", False),
            }
        else:
            script = self._resolve_script_tag_attributes(src, url, chunk, manifest)
            attributes = {
                "rel": "modulepreload",
                "href": url,
                "nonce": self.nonce(),
                "crossorigin": script.get("crossorigin", False),
            }

        attributes.update(self._integrity_attributes(chunk))

        return _apply_resolvers(
            attributes,
            self._preload_tag_attributes_resolvers,
            src, url, chunk, manifest,
        )

    def preloaded_assets(self) -> dict[str, str]:
        return self._preloaded_assets

    def asset(self, name: str, build_directory: str | None = None) -> str:
        if self.is_running_hot():
            return self.hot_asset(name)

        build_directory = build_directory or self._build_directory
        chunk = self.chunk(self.manifest(build_directory), name)

        return self._url(build_directory, chunk["file"])

    def react_refresh(self) -> str:
        if not self.is_running_hot():
            return ""

        return REACT_REFRESH_TEMPLATE.format(
            attributes=self.environment.render_attributes({"nonce": self.nonce()}),
            runtime=self.hot_asset(REACT_REFRESH_ENTRY),
        )

    def is_style_path(self, path: str) -> bool:
        return STYLE_PATH_RE.search(path) is not None

    def is_running_hot(self) -> bool:
        return self.hot_file().is_file()

    def hot_file(self) -> Path:
        return self._hot_file or self.environment.index_root / "hot"

    def hot_asset(self, asset: str) -> str:
        return f"{self.hot_file().read_text(encoding='utf-8').rstrip()}/{asset}"

    def nonce(self) -> str | None:
        return self._nonce

    def entries(self) -> list[str]:
        return self._entries

    def use_nonce(self, nonce: str | None = None) -> "Vite":
        self._nonce = nonce if nonce is not None else self.environment.random_nonce(40)
        return self

    def use_manifest(self, name: str) -> "Vite":
        self._manifest = name
        return self

    def use_integrity(self, key: str | bool) -> "Vite":
        self._integrity = key
        return self

    def use_hot_file(self, path: str | Path) -> "Vite":
        self._hot_file = Path(path)
        return self

    def use_build_directory(self, path: str) -> "Vite":
        self._build_directory = path
        return self

    def use_script_tag_attributes(self, attributes: Mapping[str, Any] | AttributeResolver) -> "Vite":
        self._script_tag_attributes_resolvers.append(_as_resolver(attributes))
        return self

    def use_style_tag_attributes(self, attributes: Mapping[str, Any] | AttributeResolver) -> "Vite":
        self._style_tag_attributes_resolvers.append(_as_resolver(attributes))
        return self

    def use_preload_tag_attributes(self, attributes: Mapping[str, Any] | AttributeResolver) -> "Vite":
        self._preload_tag_attributes_resolvers.append(_as_resolver(attributes))
        return self

    def with_entries(self, entries: Iterable[str]) -> "Vite":
        self._entries = list(entries)
        return self

    def copy(self) -> "Vite":
        clone = shallow_copy(self)
        clone._entries = list(self._entries)
        clone._preload_tag_attributes_resolvers = list(self._preload_tag_attributes_resolvers)
        clone._script_tag_attributes_resolvers = list(self._script_tag_attributes_resolvers)
        clone._style_tag_attributes_resolvers = list(self._style_tag_attributes_resolvers)
        clone._preloaded_assets = dict(self._preloaded_assets)
        return clone

    def __str__(self) -> str:
        # Safe so ``{{ vite }}`` renders as markup in Django templates.
        return mark_safe(self.resolve(self._entries))

    def __html__(self) -> str:
        return str(self)


def _as_resolver(attributes: Mapping[str, Any] | AttributeResolver) -> AttributeResolver:
    if callable(attributes):
        return attributes
    return _constant_resolver(attributes)


def _configured_resolvers(value: Any) -> list[Mapping[str, Any] | AttributeResolver]:
    if not value:
        return []
    if isinstance(value, (str, Mapping)) or callable(value):
        value = [value]
    return [import_string(item) if isinstance(item, str) else item for item in value]


@lru_cache(maxsize=1)
def get_vite() -> Vite:
    return Vite.from_settings()


@receiver(setting_changed)
def _reset_vite(setting: str, **kwargs) -> None:
    if setting.startswith("VITE_") or setting == "STATIC_URL":
        get_vite.cache_clear()


def vite_for_request(request=None) -> Vite:
    """Copy of the shared instance scoped to one request.

    The copy is stored on the request so every tag rendered for it shares one
    preload memo and one nonce. A ``csp_nonce`` already set on the request
    (e.g. by a CSP middleware) wins; otherwise ``VITE_NONCE = True`` draws a
    fresh nonce per request. Without a request a new copy is returned.
    """
    instance = getattr(request, "vite", None)
    if isinstance(instance, Vite):
        return instance

    instance = get_vite().copy()
    request_nonce = getattr(request, "csp_nonce", None)
    if request_nonce:
        instance.use_nonce(str(request_nonce))
    elif settings.VITE_NONCE is True:
        instance.use_nonce()

    if request is not None:
        request.vite = instance
    return instance


def vite(entries: str | Iterable[str] | None = None, **kwargs) -> str | Vite:
    if entries is None:
        return get_vite()
    return get_vite()(entries, **kwargs)
