"""Rendering helpers for ingestion responses and OPML exports."""

from __future__ import annotations

import datetime
import json
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

from .models import FeedListItem, IngestionResult, OpmlOutline
from .templating import get_environment


def result_payload(
    result: IngestionResult, feeds: Optional[Sequence[FeedListItem]] = None
) -> Dict[str, Any]:
    """Return the success/options/failed buckets as plain data."""
    payload: Dict[str, Any] = {
        "success": [asdict(feed) for feed in result.successes],
        "options": [[asdict(option) for option in group] for group in result.options],
        "failed": list(result.failures),
    }
    if result.successes:
        payload["click_feed"] = result.successes[0].id
        if feeds is not None:
            payload["feeds"] = [_feed_item(item) for item in feeds]
    return payload


def _feed_item(item: FeedListItem) -> Dict[str, Any]:
    data = asdict(item)
    data["tags"] = list(item.tags)
    return data


def build_result_json(
    result: IngestionResult, feeds: Optional[Sequence[FeedListItem]] = None
) -> str:
    return json.dumps(result_payload(result, feeds), indent=2, ensure_ascii=False)


def build_result_html(result: IngestionResult) -> str:
    """Render the HTML fragment shown after a subscribe request."""
    env = get_environment()
    template = env.get_template("ingest_result.html.j2")
    return template.render(result=result)


def build_opml(outlines: List[OpmlOutline], title: str = "Subscriptions") -> str:
    """Render feeds as an OPML document; tagged feeds are nested in folders."""
    untagged = [outline for outline in outlines if not outline.tags]
    folders: Dict[str, List[OpmlOutline]] = {}
    for outline in outlines:
        for tag in outline.tags:
            folders.setdefault(tag, []).append(outline)

    env = get_environment()
    template = env.get_template("subscriptions.opml.j2")
    return template.render(
        title=title,
        untagged=untagged,
        folders=sorted(folders.items()),
        created=datetime.datetime.now(datetime.timezone.utc).strftime(
            "%a, %d %b %Y %H:%M:%S +0000"
        ),
    )
