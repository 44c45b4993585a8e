"""Feed discovery: turn a feed or site URL into candidate feeds."""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

import feedparser
import requests
from bs4 import BeautifulSoup

from .models import FeedCandidate

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "rss-subscriptions/0.1 (+feed discovery)"
DEFAULT_TIMEOUT = 15.0

FEED_LINK_TYPES = (
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
    "application/feed+json",
)


class DiscoveryError(RuntimeError):
    """Raised when a URL cannot be turned into a document worth inspecting."""


def normalize_url(url: str) -> str:
    """Strip whitespace and default to http:// when no scheme is given."""
    value = (url or "").strip()
    if not value:
        raise DiscoveryError("Empty URL")
    if value.startswith("feed://"):
        value = "http://" + value[len("feed://") :]
    elif "://" not in value:
        value = "http://" + value
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise DiscoveryError(f"Unsupported URL: {url!r}")
    return value


def discover(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> List[FeedCandidate]:
    """Fetch ``url`` and return the feeds it is or advertises."""
    target = normalize_url(url)
    logger.info("Discovering feeds for %s", target)
    response = requests.get(
        target, timeout=timeout, headers={"User-Agent": user_agent}
    )
    response.raise_for_status()
    final_url = getattr(response, "url", None) or target

    parsed = feedparser.parse(response.content)
    if getattr(parsed, "version", None):
        feed_meta = getattr(parsed, "feed", {}) or {}
        candidate = FeedCandidate(
            url=final_url,
            title=feed_meta.get("title") or None,
            site_url=feed_meta.get("link") or None,
        )
        logger.debug("%s is a feed (%s)", final_url, parsed.version)
        return [candidate]

    candidates = _feed_links(response.text, final_url)
    logger.info("Found %d advertised feeds on %s", len(candidates), final_url)
    return candidates


def _feed_links(html: str, page_url: str) -> List[FeedCandidate]:
    """Collect ``<link rel="alternate">`` feed references from an HTML page."""
    soup = BeautifulSoup(html, "html.parser")
    page_title = _page_title(soup)
    seen = set()
    candidates: List[FeedCandidate] = []

    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "alternate" not in [value.lower() for value in rel]:
            continue
        link_type = (link.get("type") or "").split(";")[0].strip().lower()
        if link_type not in FEED_LINK_TYPES:
            continue
        href = urljoin(page_url, link["href"].strip())
        if href in seen:
            continue
        seen.add(href)
        candidates.append(
            FeedCandidate(
                url=href,
                title=(link.get("title") or "").strip() or page_title,
                site_url=page_url,
            )
        )

    return candidates


def _page_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None
