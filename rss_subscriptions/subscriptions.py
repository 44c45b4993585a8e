"""Unsubscribe, bulk update and export operations scoped to one user."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from . import db
from .guard import filter_owned, filter_owned_map
from .models import FeedListItem, OpmlOutline
from .renderers import build_opml

logger = logging.getLogger(__name__)


class SubscriptionNotFound(LookupError):
    """The subscription does not exist or belongs to someone else."""


def unsubscribe(session_factory, user_id: int, subscription_id: int) -> None:
    """Remove a single subscription owned by ``user_id``."""
    with session_factory() as session:
        subscription = db.find_subscription(session, user_id, subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(f"Subscription {subscription_id} not found")
        db.delete_subscriptions(session, user_id, [subscription.id])
    logger.info("User %s unsubscribed from subscription %s", user_id, subscription_id)


def bulk_unsubscribe(session_factory, user_id: int, ids: Iterable[Any]) -> int:
    """Remove the owned subscriptions among ``ids``; foreign ids are ignored."""
    with session_factory() as session:
        allowed = filter_owned(ids, db.subscription_ids(session, user_id))
        removed = db.delete_subscriptions(session, user_id, allowed)
    logger.info("User %s unsubscribed from %d feeds", user_id, removed)
    return removed


def bulk_update(
    session_factory, user_id: int, fields_by_id: Mapping[Any, Mapping[str, Any]]
) -> int:
    """Update title/push on owned subscriptions; other ids and fields are ignored."""
    with session_factory() as session:
        allowed = filter_owned_map(fields_by_id, db.subscription_ids(session, user_id))
        updated = db.update_subscriptions(session, allowed)
    logger.info("User %s updated %d subscriptions", user_id, updated)
    return updated


def unsubscribe_all(session_factory, user_id: int) -> int:
    with session_factory() as session:
        removed = db.delete_subscriptions(
            session, user_id, db.subscription_ids(session, user_id)
        )
    logger.info("User %s unsubscribed from all %d feeds", user_id, removed)
    return removed


def feed_list(session_factory, user_id: int) -> List[FeedListItem]:
    with session_factory() as session:
        return db.feed_list(session, user_id)


def export_opml(session_factory, user_id: int) -> str:
    """Render the user's subscriptions as OPML, grouped by tag."""
    outlines = [
        OpmlOutline(
            title=item.title,
            url=item.feed_url,
            site_url=item.site_url,
            tags=list(item.tags),
        )
        for item in feed_list(session_factory, user_id)
    ]
    return build_opml(outlines)
