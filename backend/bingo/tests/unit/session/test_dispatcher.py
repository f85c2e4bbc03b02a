import asyncio

from bingo.session.dispatcher import SLOW_CONSUMER_CLOSE_CODE, BroadcastDispatcher
from bingo.tests.mocks import MockConnection


async def _subscribed(dispatcher: BroadcastDispatcher, room_id: str, count: int) -> list[MockConnection]:
    conns = []
    for _ in range(count):
        conn = MockConnection()
        dispatcher.register(conn)
        dispatcher.subscribe(room_id, conn.connection_id)
        conns.append(conn)
    return conns


class TestBroadcast:
    async def test_every_subscriber_sees_messages_in_issue_order(self):
        dispatcher = BroadcastDispatcher()
        conns = await _subscribed(dispatcher, "room1", 3)

        for i in range(5):
            dispatcher.broadcast("room1", {"type": "number_called", "seq": i})
        await dispatcher.flush()

        for conn in conns:
            assert [m["seq"] for m in conn.sent_messages] == [0, 1, 2, 3, 4]

    async def test_broadcast_is_scoped_to_room(self):
        dispatcher = BroadcastDispatcher()
        (inside,) = await _subscribed(dispatcher, "room1", 1)
        (outside,) = await _subscribed(dispatcher, "room2", 1)

        dispatcher.broadcast("room1", {"type": "room_update"})
        await dispatcher.flush()

        assert len(inside.sent_messages) == 1
        assert outside.sent_messages == []

    async def test_send_to_reaches_only_target(self):
        dispatcher = BroadcastDispatcher()
        a, b = await _subscribed(dispatcher, "room1", 2)

        assert dispatcher.send_to(a.connection_id, {"type": "ack", "event": "start"}) is True
        await dispatcher.flush()

        assert a.sent_messages == [{"type": "ack", "event": "start"}]
        assert b.sent_messages == []

    async def test_send_to_unknown_connection_returns_false(self):
        assert BroadcastDispatcher().send_to("nobody", {"type": "pong"}) is False


class TestFailureIsolation:
    async def test_failing_subscriber_is_dropped_others_unaffected(self):
        dispatcher = BroadcastDispatcher()
        good, bad = await _subscribed(dispatcher, "room1", 2)
        bad.fail_sends = True

        dispatcher.broadcast("room1", {"type": "room_update", "seq": 1})
        await dispatcher.flush()
        await asyncio.sleep(0)
        dispatcher.broadcast("room1", {"type": "room_update", "seq": 2})
        await dispatcher.flush()

        assert [m["seq"] for m in good.sent_messages] == [1, 2]
        assert dispatcher.subscribers("room1") == [good.connection_id]
        assert bad.closed
        assert bad.close_code == SLOW_CONSUMER_CLOSE_CODE

    async def test_full_queue_drops_slow_subscriber(self):
        dispatcher = BroadcastDispatcher(max_pending=2)
        fast, slow = await _subscribed(dispatcher, "room1", 2)
        slow.send_delay = 10

        # slow takes the first message and stalls; two more fill its queue; the fourth overflows
        for i in range(4):
            dispatcher.broadcast("room1", {"type": "room_update", "seq": i})
            for _ in range(3):
                await asyncio.sleep(0)

        assert slow.connection_id not in dispatcher.subscribers("room1")
        assert dispatcher.send_to(slow.connection_id, {"type": "pong"}) is False
        await dispatcher.unregister(slow.connection_id)
        await dispatcher.flush()
        assert [m["seq"] for m in fast.sent_messages] == [0, 1, 2, 3]
        assert slow.sent_messages == []


class TestSubscriptions:
    async def test_subscribe_moves_connection_between_rooms(self):
        dispatcher = BroadcastDispatcher()
        conn = MockConnection()
        dispatcher.register(conn)
        dispatcher.subscribe("room1", conn.connection_id)
        dispatcher.subscribe("room2", conn.connection_id)

        assert dispatcher.subscribers("room1") == []
        assert dispatcher.subscribers("room2") == [conn.connection_id]
        await dispatcher.close_all()

    async def test_unregister_discards_pending_messages(self):
        dispatcher = BroadcastDispatcher()
        (conn,) = await _subscribed(dispatcher, "room1", 1)
        conn.send_delay = 10

        dispatcher.broadcast("room1", {"type": "room_update"})
        dispatcher.broadcast("room1", {"type": "room_update"})
        await dispatcher.unregister(conn.connection_id)

        assert dispatcher.subscribers("room1") == []
        await dispatcher.flush()
        assert conn.sent_messages == []

    async def test_forget_room_drops_group(self):
        dispatcher = BroadcastDispatcher()
        (conn,) = await _subscribed(dispatcher, "room1", 1)

        dispatcher.forget_room("room1")

        assert dispatcher.subscribers("room1") == []
        assert dispatcher.unsubscribe(conn.connection_id) is None
        await dispatcher.close_all()
        assert conn.closed
