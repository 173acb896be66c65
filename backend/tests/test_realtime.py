import asyncio

import pytest
from sqlalchemy import event
from starlette.websockets import WebSocketDisconnect

from conftest import auth, start_conversation, token_for
from portal.realtime.hub import INSERT, RealtimeHub, RowEvent


def insert_event(conversation_id, message_id):
    return RowEvent("chat_messages", INSERT, {"id": message_id, "conversation_id": conversation_id})


async def test_hub_delivers_only_matching_events():
    hub = RealtimeHub(queue_size=8)
    async with hub.subscribe("chat_messages", {"conversation_id": 1}) as sub:
        assert hub.publish(insert_event(2, 10)) == 0
        assert hub.publish(RowEvent("chat_messages", "UPDATE", {"id": 11, "conversation_id": 1})) == 0
        assert hub.publish(insert_event(1, 12)) == 1

        event = await asyncio.wait_for(sub.get(), timeout=1)
        assert event.record["id"] == 12
        assert sub.queue.empty()
    assert hub.subscriber_count == 0


async def test_full_queue_drops_oldest():
    hub = RealtimeHub(queue_size=2)
    async with hub.subscribe("chat_messages", {"conversation_id": 1}) as sub:
        for message_id in (1, 2, 3):
            hub.publish(insert_event(1, message_id))
        await asyncio.sleep(0)

        received = [(await sub.get()).record["id"] for _ in range(2)]
        assert received == [2, 3]
        assert sub.dropped == 1


async def test_events_published_before_subscribe_are_not_seen():
    hub = RealtimeHub()
    hub.publish(insert_event(1, 1))
    async with hub.subscribe("chat_messages", {"conversation_id": 1}) as sub:
        hub.publish(insert_event(1, 2))
        event = await asyncio.wait_for(sub.get(), timeout=1)
        assert event.record["id"] == 2


async def test_close_wakes_a_blocked_consumer():
    hub = RealtimeHub()
    received = []

    async with hub.subscribe("chat_messages", {"conversation_id": 1}) as sub:
        async def consume():
            async for event in sub:
                received.append(event.record["id"])

        consumer = asyncio.create_task(consume())
        hub.publish(insert_event(1, 1))
        await asyncio.sleep(0.01)
        assert not consumer.done()

        sub.close()
        await asyncio.wait_for(consumer, timeout=1)

    assert received == [1]
    assert hub.subscriber_count == 0


async def test_close_after_a_full_queue_still_stops_the_consumer():
    hub = RealtimeHub(queue_size=1)
    async with hub.subscribe("chat_messages", {"conversation_id": 1}) as sub:
        hub.publish(insert_event(1, 1))
        await asyncio.sleep(0.01)
        sub.close()
        await asyncio.sleep(0.01)

        remaining = [e async for e in sub]
    assert remaining == []


def test_payload_shape():
    event = insert_event(3, 4)
    payload = event.as_payload()
    assert payload == {"table": "chat_messages", "event": "INSERT", "new": {"id": 4, "conversation_id": 3}}
    assert RowEvent.from_payload(payload) == event


def feed_url(conversation_id, profile_id):
    return f"/realtime/messages?conversation_id={conversation_id}&token={token_for(profile_id)}"


def test_websocket_feed_receives_minimal_insert_rows(client, profiles):
    conv = start_conversation(client, profiles)

    with client.websocket_connect(feed_url(conv["id"], profiles["counselor"])) as ws:
        assert ws.receive_json() == {"event": "SUBSCRIBED", "conversation_id": conv["id"]}

        sent = client.post(
            f"/conversations/{conv['id']}/messages",
            json={"content": "Are you there?"},
            headers=auth(profiles["student"]),
        ).json()
        event = ws.receive_json()

    assert event["table"] == "chat_messages"
    assert event["event"] == "INSERT"
    assert event["new"]["id"] == sent["id"]
    assert event["new"]["content"] == "Are you there?"
    assert "sender" not in event["new"]


def test_websocket_feed_ignores_other_conversations(client, profiles):
    mine = start_conversation(client, profiles)
    other = start_conversation(client, profiles, counselor="other_counselor")

    with client.websocket_connect(feed_url(mine["id"], profiles["student"])) as ws:
        ws.receive_json()
        client.post(f"/conversations/{other['id']}/messages", json={"content": "elsewhere"},
                    headers=auth(profiles["student"]))
        client.post(f"/conversations/{mine['id']}/messages", json={"content": "here"},
                    headers=auth(profiles["student"]))
        event = ws.receive_json()

    assert event["new"]["content"] == "here"


@pytest.mark.parametrize("who", ["other_student", "other_counselor"])
def test_websocket_rejects_non_participants(client, profiles, who):
    conv = start_conversation(client, profiles)
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(feed_url(conv["id"], profiles[who])):
            pass
    assert excinfo.value.code == 1008


def test_websocket_rejects_bad_token(client, profiles):
    conv = start_conversation(client, profiles)
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/realtime/messages?conversation_id={conv['id']}&token=garbage"):
            pass
    assert excinfo.value.code == 1008


def test_open_feed_holds_no_database_connection(client, profiles, session_factory):
    engine = session_factory.kw["bind"].sync_engine
    outstanding = []

    @event.listens_for(engine, "checkout")
    def on_checkout(*args):
        outstanding.append(1)

    @event.listens_for(engine, "checkin")
    def on_checkin(*args):
        outstanding.pop()

    conv = start_conversation(client, profiles)
    assert outstanding == []

    with client.websocket_connect(feed_url(conv["id"], profiles["counselor"])) as ws:
        assert ws.receive_json()["event"] == "SUBSCRIBED"
        assert outstanding == []

        # Other requests still get connections while the feed is open
        resp = client.get(f"/conversations/{conv['id']}/messages", headers=auth(profiles["student"]))
        assert resp.status_code == 200
        assert outstanding == []

    event.remove(engine, "checkout", on_checkout)
    event.remove(engine, "checkin", on_checkin)


def test_pool_exhaustion_surfaces_as_transient(client):
    from sqlalchemy.exc import TimeoutError as PoolTimeoutError

    from portal.db import get_db
    from portal.main import app

    async def exhausted_db():
        raise PoolTimeoutError("QueuePool limit of size 5 overflow 10 reached")
        yield  # pragma: no cover

    app.dependency_overrides[get_db] = exhausted_db
    resp = client.get("/db-health")
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Service temporarily unavailable"}
