"""Resolution of a submitted URL into a single feed, a choice of feeds, or failure."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from . import db
from .discovery import DEFAULT_TIMEOUT, discover as default_discover
from .models import (
    Ambiguous,
    Failed,
    FeedCandidate,
    FeedOption,
    Resolved,
    ResolutionOutcome,
    ResolvedFeed,
)
from .reporting import ErrorReporter, LoggingErrorReporter

logger = logging.getLogger(__name__)

DiscoverFn = Callable[..., List[FeedCandidate]]


def _comparable(url: Optional[str]) -> str:
    """Normalise a URL for equality checks (case of scheme/host, trailing slash)."""
    value = (url or "").strip()
    if not value:
        return ""
    if "://" not in value:
        value = "http://" + value
    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme == "https":
        scheme = "http"
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, parts.netloc.lower(), path, parts.query, ""))


def match_hint(
    candidates: List[FeedCandidate], site_url: Optional[str]
) -> Optional[FeedCandidate]:
    """Return the only candidate matching ``site_url``, if exactly one does."""
    hint = _comparable(site_url)
    if not hint:
        return None
    matches = [
        candidate
        for candidate in candidates
        if hint in (_comparable(candidate.url), _comparable(candidate.site_url))
    ]
    if len(matches) == 1:
        return matches[0]
    return None


class FeedResolver:
    """Map a URL to ``Resolved``, ``Ambiguous`` or ``Failed``."""

    def __init__(
        self,
        session_factory,
        discover: DiscoverFn = default_discover,
        reporter: Optional[ErrorReporter] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.session_factory = session_factory
        self.discover = discover
        self.reporter = reporter or LoggingErrorReporter()
        self.timeout = timeout

    def resolve(self, url: str, site_url: Optional[str] = None) -> ResolutionOutcome:
        choice = self.choose(url, site_url)
        if isinstance(choice, FeedCandidate):
            return self.persist(choice, site_url)
        return choice

    def choose(
        self, url: str, site_url: Optional[str] = None
    ) -> Union[FeedCandidate, Ambiguous, Failed]:
        """Run discovery and pick a candidate without touching storage."""
        try:
            candidates = self.discover(url, timeout=self.timeout)
        except Exception as exc:  # noqa: BLE001 - every discovery fault is a failed URL
            self.reporter.notify(exc, {"url": url, "site_url": site_url})
            return Failed(url=url, reason=str(exc) or type(exc).__name__)

        if not candidates:
            logger.info("No feed found for %s", url)
            return Failed(url=url, reason="no feed found")

        if len(candidates) == 1:
            return candidates[0]

        chosen = match_hint(candidates, site_url)
        if chosen is not None:
            return chosen
        logger.info("%d candidate feeds for %s", len(candidates), url)
        return Ambiguous(
            options=tuple(FeedOption.from_candidate(c) for c in candidates)
        )

    def persist(
        self, candidate: FeedCandidate, site_url: Optional[str] = None
    ) -> Resolved:
        with self.session_factory() as session:
            feed = db.get_or_create_feed(session, candidate, site_url=site_url)
            return Resolved(
                feed=ResolvedFeed(
                    id=feed.id,
                    feed_url=feed.feed_url,
                    title=feed.title,
                    site_url=feed.site_url,
                )
            )
