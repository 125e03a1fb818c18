import logging

from django import template
from django.utils.html import format_html
from django.utils.safestring import mark_safe

from config.vite import ViteManifestError, vite_for_request

logger = logging.getLogger(__name__)

register = template.Library()


def _error_comment(error: ViteManifestError) -> str:
    logger.warning("Vite asset error: %s", error)
    return format_html("<!-- Vite asset error: {} -->", error)


@register.simple_tag(takes_context=True)
def vite(context, *entries: str, build_directory: str | None = None) -> str:
    """Render script, stylesheet and preload tags for the given entries.

    Without entries the configured ``VITE_ENTRIES`` are used. Variables of the
    template context can be referenced in entry names, e.g. ``"src/{{ page }}.ts"``.
    """
    instance = vite_for_request(context.get("request"))
    try:
        tags = instance(
            list(entries) if entries else instance.entries(),
            build_directory,
            context=context.flatten(),
        )
    except ViteManifestError as error:
        return _error_comment(error)

    return mark_safe(tags)


@register.simple_tag(takes_context=True)
def vite_asset(context, name: str, build_directory: str | None = None) -> str:
    try:
        return vite_for_request(context.get("request")).asset(name, build_directory)
    except ViteManifestError as error:
        return _error_comment(error)


@register.simple_tag(takes_context=True)
def vite_react_refresh(context) -> str:
    return mark_safe(vite_for_request(context.get("request")).react_refresh())
