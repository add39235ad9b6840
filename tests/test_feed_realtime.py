# tests/test_feed_realtime.py
"""Tests for applying realtime change events to the feed."""

import asyncio

import pytest

from community_feed.schemas import PostRow
from community_feed.services.realtime import ChangeEvent, ChangeType

from tests.conftest import at


def _post_insert(row):
    return ChangeEvent(table="community_posts", type=ChangeType.INSERT, new=row)


@pytest.mark.asyncio
async def test_insert_from_another_user_is_prepended(running_feed, store, seeded_posts) -> None:
    feed = running_feed
    await feed.load_feed()

    await store.insert(
        "community_posts", {"id": "p9", "user_id": "u-other", "content": "Free couch", "created_at": at(30)}
    )
    await feed.drain()

    post = feed.posts[0]
    assert post.id == "p9"
    assert post.author.label == "Other"
    assert post.comments_count == 0


@pytest.mark.asyncio
async def test_repeated_insert_event_is_applied_once(running_feed, store, seeded_posts) -> None:
    feed = running_feed
    await feed.load_feed()
    event = _post_insert({"id": "p9", "user_id": "u-other", "content": "Free couch", "created_at": at(30)})

    store.change_feed.publish(event)
    store.change_feed.publish(event)
    await feed.drain()

    assert [p.id for p in feed.posts].count("p9") == 1
    assert len(feed.posts) == 4


@pytest.mark.asyncio
async def test_echo_before_insert_returns_keeps_one_entry(running_feed, store, mocker) -> None:
    feed = running_feed
    gate = asyncio.Event()
    sent = {}

    async def slow_insert(**kwargs):
        sent.update(kwargs)
        await gate.wait()
        return PostRow(
            id="p-new",
            user_id=kwargs["user_id"],
            content=kwargs["content"],
            created_at=at(20),
            client_temp_id=kwargs["client_temp_id"],
        )

    mocker.patch.object(feed.repo, "insert_post", side_effect=slow_insert)
    task = asyncio.create_task(feed.create_post("hello"))
    while not sent:
        await asyncio.sleep(0)
    assert feed.posts[0].pending

    store.change_feed.publish(
        _post_insert(
            {
                "id": "p-new",
                "user_id": "u-me",
                "content": "hello",
                "created_at": at(20),
                "client_temp_id": sent["client_temp_id"],
            }
        )
    )
    await feed.drain()

    assert [p.id for p in feed.posts] == ["p-new"]
    assert not feed.posts[0].pending

    gate.set()
    confirmed = await task

    assert confirmed.id == "p-new"
    assert [p.id for p in feed.posts] == ["p-new"]


@pytest.mark.asyncio
async def test_update_patches_content_and_keeps_aggregates(running_feed, store, seeded_posts) -> None:
    feed = running_feed
    await feed.load_feed()

    await store.update("community_posts", {"content": "Bike sold"}, filters={"id": "p1"})
    await feed.drain()

    post = feed.post("p1")
    assert post.content == "Bike sold"
    assert post.my_reaction == "love"
    assert [p.id for p in feed.posts] == ["p3", "p2", "p1"]


@pytest.mark.asyncio
async def test_delete_event_removes_post_and_closes_its_thread(
    running_feed, store, seeded_comments
) -> None:
    feed = running_feed
    await feed.load_feed()
    await feed.open_comments("p1")

    await store.delete("community_posts", filters={"id": "p1"})
    await feed.drain()

    assert feed.post("p1") is None
    assert feed.active_post_id is None
    assert store.change_feed.subscriber_count == 2


@pytest.mark.asyncio
async def test_reaction_burst_triggers_one_refetch(running_feed, store, seeded_posts, mocker) -> None:
    feed = running_feed
    await feed.load_feed()
    aggregates = mocker.spy(feed.repo, "aggregates_for")

    for user in ["u-a", "u-b", "u-c", "u-d", "u-e"]:
        await store.insert(
            "community_reactions", {"post_id": "p3", "user_id": user, "reaction_type": "like"}
        )
    await feed.drain()

    assert feed.post("p3").dirty
    assert aggregates.call_count == 0

    await feed.debouncer.flush()

    assert aggregates.call_count == 1
    post = feed.post("p3")
    assert not post.dirty
    assert dict(post.reaction_counts) == {"like": 5}


@pytest.mark.asyncio
async def test_reaction_event_for_unknown_post_is_ignored(running_feed, store, seeded_posts) -> None:
    feed = running_feed
    await feed.load_feed()

    await store.insert(
        "community_reactions", {"post_id": "elsewhere", "user_id": "u-a", "reaction_type": "wow"}
    )
    await feed.drain()

    assert not feed.debouncer.pending("elsewhere")
    assert not any(p.dirty for p in feed.posts)


@pytest.mark.asyncio
async def test_comment_from_another_user_appears_once(running_feed, store, seeded_comments) -> None:
    feed = running_feed
    await feed.load_feed()
    await feed.open_comments("p1")
    row = await store.insert(
        "community_comments",
        {"post_id": "p1", "user_id": "u-other", "content": "Me too", "reply_to": "c2", "created_at": at(20)},
    )
    store.change_feed.publish(
        ChangeEvent(table="community_comments", type=ChangeType.INSERT, new=row)
    )
    await feed.drain()

    replies = feed.comments[1].replies
    assert [c.id for c in replies] == [row["id"]]
    assert replies[0].author.label == "Other"
    assert feed.post("p1").comments_count == 6


@pytest.mark.asyncio
async def test_comment_delete_event_updates_thread_and_count(running_feed, store, seeded_comments) -> None:
    feed = running_feed
    await feed.load_feed()
    await feed.open_comments("p1")

    await store.delete("community_comments", filters={"id": "c2"})
    await feed.drain()

    assert "c2" not in [c.id for c in feed.comments]
    assert feed.post("p1").comments_count == 4


@pytest.mark.asyncio
async def test_comment_events_for_closed_thread_are_ignored(running_feed, store, seeded_comments) -> None:
    feed = running_feed
    await feed.load_feed()
    await feed.open_comments("p1")
    feed.close_comments()

    await store.insert("community_comments", {"post_id": "p1", "user_id": "u-other", "content": "hi"})
    await feed.drain()

    assert feed.comments == ()
    assert feed.post("p1").comments_count == 5


@pytest.mark.asyncio
async def test_malformed_event_is_logged_and_loop_keeps_running(running_feed, store, caplog) -> None:
    feed = running_feed
    store.change_feed.publish(_post_insert({"content": "no id"}))
    await feed.drain()

    await store.insert("community_posts", {"id": "p9", "user_id": "u-other", "content": "ok"})
    await feed.drain()

    assert "Failed to apply INSERT on community_posts" in caplog.text
    assert [p.id for p in feed.posts] == ["p9"]


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_reconciliation(running_feed, store, caplog) -> None:
    feed = running_feed
    calls = []

    def render() -> None:
        calls.append(len(feed.posts))
        if len(calls) == 1:
            raise TypeError("render bug")

    feed.add_listener(render)

    await store.insert("community_posts", {"id": "p9", "user_id": "u-other", "content": "one"})
    await feed.drain()
    await store.insert("community_posts", {"id": "p10", "user_id": "u-other", "content": "two"})
    await feed.drain()

    assert [p.id for p in feed.posts] == ["p10", "p9"]
    assert len(calls) == 2
    assert "Feed listener" in caplog.text


@pytest.mark.asyncio
async def test_handler_attribute_error_is_logged_and_loop_continues(
    running_feed, store, mocker, caplog
) -> None:
    feed = running_feed
    broken = mocker.patch.object(feed.repo, "author", side_effect=AttributeError("no profile"))

    await store.insert("community_posts", {"id": "p9", "user_id": "u-other", "content": "one"})
    await feed.drain()
    mocker.stop(broken)
    await store.insert("community_posts", {"id": "p10", "user_id": "u-other", "content": "two"})
    await feed.drain()

    assert [p.id for p in feed.posts] == ["p10"]
    assert "Failed to apply INSERT on community_posts" in caplog.text
