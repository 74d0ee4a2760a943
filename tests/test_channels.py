# tests/test_channels.py
# PURPOSE: room bookkeeping and fan-out of the in-process channel manager.

import asyncio

from collablist.realtime import ChannelManager, Connection


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.closed_with = None

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("peer went away")
        self.sent.append(message)

    async def close(self, code=1000):
        self.closed_with = code


def _conn(channels, user_id, fail=False):
    conn = Connection(FakeSocket(fail), user_id)
    channels.register(conn)
    return conn


def test_register_puts_connection_in_personal_room():
    channels = ChannelManager()
    conn = _conn(channels, 7)
    assert channels.room_members("user:7") == [conn]
    assert channels.connection_count() == 1
    channels.unregister(conn)
    assert channels.room_members("user:7") == []
    assert channels.connection_count() == 0


def test_emit_delivers_once_per_connection_across_rooms():
    channels = ChannelManager()
    a, b = _conn(channels, 1), _conn(channels, 2)
    channels.join(a, 10)
    channels.join(b, 10)

    delivered = asyncio.run(channels.emit(["list:10", "user:1"], "list:deleted", {"listId": 10}))
    assert delivered == 2
    assert a.websocket.sent == [{"event": "list:deleted", "data": {"listId": 10}}]
    assert len(b.websocket.sent) == 1


def test_broadcast_can_exclude_sender():
    channels = ChannelManager()
    a, b = _conn(channels, 1), _conn(channels, 2)
    channels.join(a, 3)
    channels.join(b, 3)
    assert asyncio.run(channels.broadcast(3, "task:created", {"id": 1}, exclude=a)) == 1
    assert a.websocket.sent == []


def test_failed_send_unregisters_only_that_connection():
    channels = ChannelManager()
    good, bad = _conn(channels, 1), _conn(channels, 2, fail=True)
    channels.join(good, 5)
    channels.join(bad, 5)

    assert asyncio.run(channels.broadcast(5, "task:updated", {})) == 1
    assert channels.room_members("list:5") == [good]
    assert channels.connection_count() == 1


def test_send_to_user_reaches_all_their_sockets():
    channels = ChannelManager()
    phone, laptop, other = _conn(channels, 4), _conn(channels, 4), _conn(channels, 5)
    assert asyncio.run(channels.send_to_user(4, "task:reminder", {"stage": "0min"})) == 2
    assert other.websocket.sent == []
    assert phone.websocket.sent == laptop.websocket.sent


def test_evict_and_close_room():
    channels = ChannelManager()
    a1, a2, b = _conn(channels, 1), _conn(channels, 1), _conn(channels, 2)
    for conn in (a1, a2, b):
        channels.join(conn, 8)

    assert channels.evict(8, 1) == 2
    assert channels.room_members("list:8") == [b]
    # personal room survives eviction from a list
    assert len(channels.room_members("user:1")) == 2

    channels.close_room(8)
    assert channels.room_members("list:8") == []
    assert "list:8" not in b.rooms


def test_leave_room():
    channels = ChannelManager()
    conn = _conn(channels, 1)
    channels.join(conn, 2)
    channels.leave(conn, 2)
    assert asyncio.run(channels.broadcast(2, "task:created", {})) == 0


def test_shutdown_closes_everything():
    channels = ChannelManager()
    a, b = _conn(channels, 1), _conn(channels, 2)

    async def lifecycle():
        await channels.start()
        assert channels.running
        await channels.shutdown()

    asyncio.run(lifecycle())
    assert not channels.running
    assert channels.connection_count() == 0
    assert a.websocket.closed_with == b.websocket.closed_with == 1001
