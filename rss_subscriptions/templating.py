"""Jinja2 environment for rss_subscriptions templates."""

from __future__ import annotations

from importlib import resources
from urllib.parse import urlsplit

from jinja2 import Environment, FileSystemLoader, select_autoescape

_ENV: Environment | None = None


def _hostname(value: str | None) -> str:
    """Return the host part of a URL, or the value itself when it has none."""
    if not value:
        return ""
    return urlsplit(value).hostname or value


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        template_dir = resources.files(__package__) / "templates"
        loader = FileSystemLoader(str(template_dir))
        _ENV = Environment(
            loader=loader,
            autoescape=select_autoescape(["html", "xml", "html.j2", "opml.j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _ENV.filters["hostname"] = _hostname
    return _ENV
