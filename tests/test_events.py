"""In-process change feed."""

from __future__ import annotations

import asyncio

import pytest

from swaami.events import MATCHES, QUEUE_SIZE, TASKS, Event, EventBus, event_bus, messages_channel
from tests.conftest import auth_header, claimed


def drain(queue: asyncio.Queue) -> list[Event]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def test_publish_reaches_subscribers_of_that_channel():
    bus = EventBus()
    tasks_q = bus.subscribe(TASKS)
    matches_q = bus.subscribe(MATCHES)

    assert bus.publish(TASKS, Event(type="task_created", entity_id="tk_1")) == 1
    assert [e.entity_id for e in drain(tasks_q)] == ["tk_1"]
    assert drain(matches_q) == []


def test_unsubscribe_removes_channel():
    bus = EventBus()
    queue = bus.subscribe(TASKS)
    bus.unsubscribe(TASKS, queue)
    assert bus.subscriber_count(TASKS) == 0
    assert bus.publish(TASKS, Event(type="task_created", entity_id="tk_1")) == 0


def test_slow_subscriber_drops_instead_of_blocking():
    bus = EventBus()
    slow = bus.subscribe(TASKS)
    for i in range(QUEUE_SIZE):
        bus.publish(TASKS, Event(type="task_created", entity_id=f"tk_{i}"))
    fast = bus.subscribe(TASKS)

    assert bus.publish(TASKS, Event(type="task_created", entity_id="tk_late")) == 1
    assert slow.qsize() == QUEUE_SIZE
    assert [e.entity_id for e in drain(fast)] == ["tk_late"]


def test_close_wakes_subscribers():
    bus = EventBus()
    queue = bus.subscribe(TASKS)
    bus.close()
    assert queue.get_nowait() is None
    assert bus.subscriber_count(TASKS) == 0


@pytest.mark.asyncio
async def test_claim_publishes_after_commit(neighbours):
    tasks_q = event_bus.subscribe(TASKS)
    matches_q = event_bus.subscribe(MATCHES)
    try:
        match = await claimed(neighbours)
        task_events = drain(tasks_q)
        match_events = drain(matches_q)
    finally:
        event_bus.unsubscribe(TASKS, tasks_q)
        event_bus.unsubscribe(MATCHES, matches_q)

    assert [(e.type, e.entity_id) for e in task_events] == [
        ("task_claimed", neighbours["task"]["id"])
    ]
    assert [(e.type, e.entity_id) for e in match_events] == [("match_created", match["id"])]


@pytest.mark.asyncio
async def test_messages_channel_is_per_match(neighbours):
    match = await claimed(neighbours)
    queue = event_bus.subscribe(messages_channel(match["id"]))
    try:
        await neighbours["client"].post(
            f"/v1/matches/{match['id']}/messages",
            json={"content": "On my way"},
            headers=auth_header(neighbours["helper"]["key"]),
        )
        events = drain(queue)
    finally:
        event_bus.unsubscribe(messages_channel(match["id"]), queue)

    assert [e.type for e in events] == ["message_created"]
    assert events[0].data["sender_id"] == neighbours["helper"]["id"]


@pytest.mark.asyncio
async def test_event_stream_checks_channel(neighbours):
    c = neighbours["client"]
    helper_key = neighbours["helper"]["key"]
    resp = await c.get("/v1/events?channel=gossip", headers=auth_header(helper_key))
    assert resp.status_code == 400

    match = await claimed(neighbours)
    resp = await c.get(
        f"/v1/events?channel=messages:{match['id']}",
        headers=auth_header(neighbours["rival"]["key"]),
    )
    assert resp.status_code == 403
