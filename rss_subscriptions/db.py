"""Persistence layer for feeds, subscriptions and taggings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .models import FeedCandidate, FeedListItem

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=True)
    favicon_hash = Column(String, nullable=True)
    favicon_complete = Column(Boolean, nullable=False, default=True)


class FeedModel(Base):
    """A feed shared by every subscriber, unique by URL."""

    __tablename__ = "feeds"

    id = Column(Integer, primary_key=True)
    feed_url = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=True)
    site_url = Column(String, nullable=True)
    favicon_host = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class SubscriptionModel(Base):
    """Per-user binding to a feed."""

    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "feed_id"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    feed_id = Column(Integer, ForeignKey("feeds.id"), nullable=False)
    title = Column(String, nullable=True)
    push = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class TaggingModel(Base):
    __tablename__ = "taggings"
    __table_args__ = (UniqueConstraint("user_id", "feed_id", "tag"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    feed_id = Column(Integer, ForeignKey("feeds.id"), nullable=False)
    tag = Column(String, nullable=False)


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine."""
    if not connection_string:
        return None

    logger.info("Initializing database connection: %s", connection_string)
    engine = create_engine(connection_string)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine)


def _commit(session: Session) -> None:
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_or_create_user(
    session: Session, user_id: int, email: Optional[str] = None
) -> UserModel:
    user = session.get(UserModel, user_id)
    if user is not None:
        return user
    try:
        user = UserModel(id=user_id, email=email, favicon_complete=True)
        session.add(user)
        session.commit()
    except IntegrityError:
        session.rollback()
        user = session.get(UserModel, user_id)
        if user is None:
            raise
    return user


def get_or_create_feed(
    session: Session, candidate: FeedCandidate, site_url: Optional[str] = None
) -> FeedModel:
    """Return the feed row for ``candidate.url``, inserting it when missing.

    The unique constraint on ``feed_url`` decides concurrent inserts: the loser
    rolls back and reads the winner's row.
    """
    stmt = select(FeedModel).where(FeedModel.feed_url == candidate.url)
    existing = session.execute(stmt).scalar_one_or_none()
    if existing is not None:
        return existing

    feed = FeedModel(
        feed_url=candidate.url,
        title=candidate.title,
        site_url=candidate.site_url or site_url,
    )
    session.add(feed)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.debug("Feed %s created concurrently; reusing it", candidate.url)
        return session.execute(stmt).scalar_one()
    logger.info("Created feed %s (id %s)", feed.feed_url, feed.id)
    return feed


def safe_subscribe(
    session: Session, user_id: int, feed_id: int, title: Optional[str] = None
) -> Tuple[SubscriptionModel, bool]:
    """Subscribe ``user_id`` to ``feed_id`` once; return the row and whether it is new."""
    stmt = select(SubscriptionModel).where(
        SubscriptionModel.user_id == user_id,
        SubscriptionModel.feed_id == feed_id,
    )
    existing = session.execute(stmt).scalar_one_or_none()
    if existing is not None:
        return existing, False

    subscription = SubscriptionModel(user_id=user_id, feed_id=feed_id, title=title)
    session.add(subscription)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.debug("User %s already subscribed to feed %s", user_id, feed_id)
        return session.execute(stmt).scalar_one(), False
    return subscription, True


def subscription_ids(session: Session, user_id: int) -> List[int]:
    stmt = select(SubscriptionModel.id).where(SubscriptionModel.user_id == user_id)
    return list(session.execute(stmt).scalars().all())


def find_subscription(
    session: Session, user_id: int, subscription_id: int
) -> Optional[SubscriptionModel]:
    stmt = select(SubscriptionModel).where(
        SubscriptionModel.id == subscription_id,
        SubscriptionModel.user_id == user_id,
    )
    return session.execute(stmt).scalar_one_or_none()


def delete_subscriptions(session: Session, user_id: int, ids: Iterable[int]) -> int:
    """Delete the user's subscriptions with ``ids`` and their taggings."""
    ids = list(ids)
    if not ids:
        return 0

    stmt = select(SubscriptionModel).where(
        SubscriptionModel.id.in_(ids), SubscriptionModel.user_id == user_id
    )
    subscriptions = session.execute(stmt).scalars().all()
    if not subscriptions:
        return 0

    feed_ids = [subscription.feed_id for subscription in subscriptions]
    session.execute(
        delete(TaggingModel).where(
            TaggingModel.user_id == user_id, TaggingModel.feed_id.in_(feed_ids)
        )
    )
    for subscription in subscriptions:
        session.delete(subscription)
    _commit(session)
    return len(subscriptions)


def update_subscriptions(
    session: Session, fields_by_id: Mapping[int, Mapping[str, Any]]
) -> int:
    """Apply title/push changes keyed by subscription id."""
    if not fields_by_id:
        return 0

    stmt = select(SubscriptionModel).where(
        SubscriptionModel.id.in_(list(fields_by_id))
    )
    updated = 0
    for subscription in session.execute(stmt).scalars().all():
        fields = fields_by_id[subscription.id]
        if "title" in fields:
            title = fields["title"]
            subscription.title = title.strip() if title and title.strip() else None
        if "push" in fields:
            subscription.push = _as_bool(fields["push"])
        updated += 1
    _commit(session)
    return updated


def add_tagging(session: Session, user_id: int, feed_id: int, tag: str) -> None:
    stmt = select(TaggingModel).where(
        TaggingModel.user_id == user_id,
        TaggingModel.feed_id == feed_id,
        TaggingModel.tag == tag,
    )
    if session.execute(stmt).scalar_one_or_none() is not None:
        return
    session.add(TaggingModel(user_id=user_id, feed_id=feed_id, tag=tag))
    try:
        session.commit()
    except IntegrityError:
        session.rollback()


def tags_by_feed(session: Session, user_id: int) -> Dict[int, List[str]]:
    stmt = (
        select(TaggingModel.feed_id, TaggingModel.tag)
        .where(TaggingModel.user_id == user_id)
        .order_by(TaggingModel.tag)
    )
    tags: Dict[int, List[str]] = {}
    for feed_id, tag in session.execute(stmt).all():
        tags.setdefault(feed_id, []).append(tag)
    return tags


def feed_list(session: Session, user_id: int) -> List[FeedListItem]:
    """Return the user's feeds with display titles, sorted case-insensitively."""
    stmt = (
        select(SubscriptionModel, FeedModel)
        .join(FeedModel, FeedModel.id == SubscriptionModel.feed_id)
        .where(SubscriptionModel.user_id == user_id)
    )
    tags = tags_by_feed(session, user_id)
    items = [
        FeedListItem(
            feed_id=feed.id,
            subscription_id=subscription.id,
            title=subscription.title or feed.title or feed.feed_url,
            feed_url=feed.feed_url,
            site_url=feed.site_url,
            push=bool(subscription.push),
            tags=tuple(tags.get(feed.id, ())),
        )
        for subscription, feed in session.execute(stmt).all()
    ]
    return sorted(items, key=lambda item: (item.title.lower(), item.feed_id))


def count_user_feeds(session: Session, user_id: int) -> int:
    stmt = select(func.count(SubscriptionModel.id)).where(
        SubscriptionModel.user_id == user_id
    )
    return session.execute(stmt).scalar_one()


def user_feeds_slice(
    session: Session, user_id: int, start: int, finish: int
) -> List[FeedModel]:
    """Return the user's feeds at 1-indexed positions ``start..finish`` by feed id."""
    stmt = (
        select(FeedModel)
        .join(SubscriptionModel, SubscriptionModel.feed_id == FeedModel.id)
        .where(SubscriptionModel.user_id == user_id)
        .order_by(FeedModel.id)
        .offset(start - 1)
        .limit(finish - start + 1)
    )
    return list(session.execute(stmt).scalars().all())


def max_feed_id(session: Session) -> int:
    return session.execute(select(func.max(FeedModel.id))).scalar_one() or 0


def feeds_in_range(session: Session, start: int, finish: int) -> List[FeedModel]:
    stmt = (
        select(FeedModel)
        .where(FeedModel.id >= start, FeedModel.id <= finish)
        .order_by(FeedModel.id)
    )
    return list(session.execute(stmt).scalars().all())


def mark_favicons_stale(session: Session, user_id: int) -> None:
    user = get_or_create_user(session, user_id)
    user.favicon_complete = False
    _commit(session)


def store_favicon_hash(session: Session, user_id: int, value: str) -> None:
    user = get_or_create_user(session, user_id)
    user.favicon_hash = value
    user.favicon_complete = True
    _commit(session)
