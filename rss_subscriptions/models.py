"""Shared data models for rss_subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class FeedCandidate:
    """A feed surfaced by discovery for a submitted URL."""

    url: str
    title: Optional[str] = None
    site_url: Optional[str] = None


@dataclass(frozen=True)
class FeedOption:
    """Candidate offered back to the user when a site exposes several feeds."""

    title: str
    url: str
    site_url: Optional[str] = None

    @classmethod
    def from_candidate(cls, candidate: FeedCandidate) -> "FeedOption":
        return cls(
            title=candidate.title or candidate.url,
            url=candidate.url,
            site_url=candidate.site_url,
        )


@dataclass(frozen=True)
class ResolvedFeed:
    """A feed reconciled to a unique persisted row."""

    id: int
    feed_url: str
    title: Optional[str] = None
    site_url: Optional[str] = None


@dataclass(frozen=True)
class Resolved:
    feed: ResolvedFeed


@dataclass(frozen=True)
class Ambiguous:
    options: Tuple[FeedOption, ...]

    def __post_init__(self) -> None:
        if not self.options:
            raise ValueError("Ambiguous outcome requires at least one option.")
        object.__setattr__(self, "options", tuple(self.options))


@dataclass(frozen=True)
class Failed:
    url: str
    reason: str = ""


ResolutionOutcome = Union[Resolved, Ambiguous, Failed]


@dataclass
class IngestionResult:
    """Outcome of one ingestion call, in submission order."""

    successes: List[ResolvedFeed] = field(default_factory=list)
    options: List[List[FeedOption]] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    @property
    def any_success(self) -> bool:
        return bool(self.successes)


@dataclass(frozen=True)
class BatchRange:
    """Contiguous, 1-indexed, inclusive range of identifiers."""

    start: int
    finish: int

    def __len__(self) -> int:
        return self.finish - self.start + 1

    def __iter__(self):
        # Allows ``start, finish = batch`` unpacking.
        yield self.start
        yield self.finish

    def ids(self) -> List[int]:
        return list(range(self.start, self.finish + 1))


@dataclass
class FeedListItem:
    """Row of the per-user feed list snapshot."""

    feed_id: int
    subscription_id: int
    title: str
    feed_url: str
    site_url: Optional[str] = None
    push: bool = False
    tags: Sequence[str] = ()


@dataclass
class OpmlOutline:
    """A single feed read from, or written to, an OPML document."""

    title: str
    url: str
    site_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
