from xml.etree import ElementTree as ET

import pytest

from rss_subscriptions import db, subscriptions
from rss_subscriptions.models import FeedCandidate
from rss_subscriptions.subscriptions import SubscriptionNotFound


@pytest.fixture
def seeded(session_factory):
    """User 1 owns two subscriptions, user 2 owns one."""
    ids = {}
    with session_factory() as session:
        for user_id in (1, 2):
            db.get_or_create_user(session, user_id)
        for key, user_id, url, title in [
            ("mine_a", 1, "https://a.example.com/feed", "A feed"),
            ("mine_b", 1, "https://b.example.com/feed", "B feed"),
            ("theirs", 2, "https://c.example.com/feed", "C feed"),
        ]:
            feed = db.get_or_create_feed(
                session,
                FeedCandidate(url=url, title=title, site_url=url.rsplit("/", 1)[0]),
            )
            subscription, _ = db.safe_subscribe(session, user_id, feed.id)
            ids[key] = subscription.id
        db.add_tagging(session, 1, 1, "Tech")
    return ids


def _ids(session_factory, user_id):
    with session_factory() as session:
        return db.subscription_ids(session, user_id)


def test_bulk_unsubscribe_ignores_foreign_ids_silently(session_factory, seeded):
    removed = subscriptions.bulk_unsubscribe(
        session_factory, 1, [str(seeded["mine_a"]), str(seeded["theirs"])]
    )

    assert removed == 1
    assert _ids(session_factory, 1) == [seeded["mine_b"]]
    assert _ids(session_factory, 2) == [seeded["theirs"]]


def test_bulk_update_only_touches_owned_rows_and_permitted_fields(
    session_factory, seeded
):
    updated = subscriptions.bulk_update(
        session_factory,
        1,
        {
            str(seeded["mine_a"]): {"title": "Renamed", "push": "1", "user_id": 2},
            str(seeded["theirs"]): {"title": "Hijacked"},
        },
    )

    assert updated == 1
    titles = {
        item.subscription_id: item.title
        for item in subscriptions.feed_list(session_factory, 1)
    }
    assert titles[seeded["mine_a"]] == "Renamed"
    theirs = subscriptions.feed_list(session_factory, 2)[0]
    assert theirs.title == "C feed"


def test_unsubscribe_single_owned(session_factory, seeded):
    subscriptions.unsubscribe(session_factory, 1, seeded["mine_a"])
    assert _ids(session_factory, 1) == [seeded["mine_b"]]


def test_unsubscribe_single_foreign_raises_not_found(session_factory, seeded):
    with pytest.raises(SubscriptionNotFound):
        subscriptions.unsubscribe(session_factory, 1, seeded["theirs"])
    assert _ids(session_factory, 2) == [seeded["theirs"]]


def test_unsubscribe_all(session_factory, seeded):
    assert subscriptions.unsubscribe_all(session_factory, 1) == 2
    assert _ids(session_factory, 1) == []
    assert _ids(session_factory, 2) == [seeded["theirs"]]


def test_export_opml_groups_tagged_feeds(session_factory, seeded):
    document = subscriptions.export_opml(session_factory, 1)

    root = ET.fromstring(document.encode("utf-8"))
    body = root.find("body")
    folder = body.find("outline[@title='Tech']")
    assert folder is not None
    assert folder.find("outline").attrib["xmlUrl"] == "https://a.example.com/feed"
    top_level = [
        outline.attrib["xmlUrl"]
        for outline in body.findall("outline")
        if "xmlUrl" in outline.attrib
    ]
    assert top_level == ["https://b.example.com/feed"]
    assert "c.example.com" not in document
