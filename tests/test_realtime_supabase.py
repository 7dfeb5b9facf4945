"""
Tests for the Supabase realtime client with an in-memory websocket.

Run with: pytest tests/test_realtime_supabase.py -v
"""
import asyncio
import json

from conftest import make_helper_config
from shared.clients.realtime.RealtimeClientManager import RealtimeClientManager
from shared.clients.realtime.supabase.RealtimeClientSupabase import RealtimeClientSupabase

ENV = {
    "REALTIME_ENGINE": "supabase",
    "REALTIME_SUPABASE_BASE_URL": "https://project.supabase.test",
    "REALTIME_SUPABASE_API_KEY": "anon-key",
}


class FakeSocket:
    """Websocket double: ``push`` queues a server message, ``end`` closes the stream."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self.end()

    def push(self, message: dict) -> None:
        self._inbox.put_nowait(json.dumps(message))

    def end(self) -> None:
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def events(self, name: str) -> list[dict]:
        return [m for m in self.sent if m["event"] == name]


def _client(sockets: list[FakeSocket], env: dict | None = None) -> RealtimeClientSupabase:
    client = RealtimeClientManager(make_helper_config({**ENV, **(env or {})})).get_client()

    async def open_socket():
        return sockets.pop(0)

    client._open_socket = open_socket
    return client


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _change(topic: str, table: str, change_type: str, record: dict) -> dict:
    return {
        "topic": topic,
        "event": "postgres_changes",
        "payload": {"data": {"table": table, "type": change_type, "record": record, "old_record": {}, "commit_timestamp": "2025-01-01T00:00:00Z"}},
        "ref": None,
    }


class TestRealtimeSupabase:
    """Tests for the Phoenix channel protocol."""

    def test_websocket_url(self):
        client = RealtimeClientSupabase(make_helper_config(ENV))
        assert client._get_websocket_url() == "wss://project.supabase.test/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0"

    def test_join_filters_by_org(self):
        """The join carries the table, the org filter and the user's token."""
        async def scenario():
            socket = FakeSocket()
            client = _client([socket])
            subscription = await client.do_subscribe("parts", "org-1", callback=lambda e: asyncio.sleep(0), access_token="jwt")
            await client.close()
            return socket, subscription

        socket, subscription = asyncio.run(scenario())

        join = socket.events("phx_join")[0]
        assert join["topic"] == subscription.topic
        assert subscription.topic.startswith("realtime:parts-changes-org-1-")
        assert join["payload"]["config"]["postgres_changes"] == [
            {"event": "*", "schema": "public", "table": "parts", "filter": "org_id=eq.org-1"}
        ]
        assert join["payload"]["access_token"] == "jwt"
        assert join["ref"] == join["join_ref"] == subscription.join_ref

    def test_reply_marks_channel_joined(self):
        async def scenario():
            socket = FakeSocket()
            client = _client([socket])
            subscription = await client.do_subscribe("documents", "org-1", callback=lambda e: asyncio.sleep(0))
            socket.push({"topic": subscription.topic, "event": "phx_reply", "payload": {"status": "ok"}, "ref": "stale"})
            await _settle()
            before = subscription.joined
            socket.push({"topic": subscription.topic, "event": "phx_reply", "payload": {"status": "ok"}, "ref": subscription.join_ref})
            await _settle()
            after = subscription.joined
            await client.close()
            return before, after

        assert asyncio.run(scenario()) == (False, True)

    def test_changes_reach_their_channel(self):
        """Each change goes to the callback of its topic only."""
        async def scenario():
            socket = FakeSocket()
            client = _client([socket])
            parts_events, documents_events = [], []

            async def on_parts(event):
                parts_events.append(event)

            async def on_documents(event):
                documents_events.append(event)

            parts = await client.do_subscribe("parts", "org-1", callback=on_parts)
            await client.do_subscribe("documents", "org-1", callback=on_documents)
            socket.push(_change(parts.topic, "parts", "UPDATE", {"id": "p1", "org_id": "org-1", "priority": "hot"}))
            socket.push({"topic": parts.topic, "event": "postgres_changes", "payload": {"ids": [1]}})
            await _settle()
            await client.close()
            return parts_events, documents_events

        parts_events, documents_events = asyncio.run(scenario())

        assert len(parts_events) == 1 and documents_events == []
        assert parts_events[0].event_type == "UPDATE"
        assert parts_events[0].row_id == "p1"
        assert parts_events[0].org_id == "org-1"

    def test_failing_callback_does_not_stop_delivery(self):
        async def scenario():
            socket = FakeSocket()
            client = _client([socket])
            seen = []

            async def handler(event):
                seen.append(event.row_id)
                if event.row_id == "p1":
                    raise RuntimeError("boom")

            sub = await client.do_subscribe("parts", "org-1", callback=handler)
            socket.push(_change(sub.topic, "parts", "INSERT", {"id": "p1", "org_id": "org-1"}))
            socket.push(_change(sub.topic, "parts", "INSERT", {"id": "p2", "org_id": "org-1"}))
            await _settle()
            await client.close()
            return seen

        assert asyncio.run(scenario()) == ["p1", "p2"]

    def test_unsubscribe_leaves_and_drops_late_events(self):
        async def scenario():
            socket = FakeSocket()
            client = _client([socket])
            seen = []

            async def handler(event):
                seen.append(event)

            sub = await client.do_subscribe("parts", "org-1", callback=handler)
            await client.do_unsubscribe(sub)
            await client.do_unsubscribe(sub)
            socket.push(_change(sub.topic, "parts", "DELETE", {"id": "p1", "org_id": "org-1"}))
            await _settle()
            await client.close()
            return socket, sub, seen

        socket, sub, seen = asyncio.run(scenario())

        leaves = socket.events("phx_leave")
        assert len(leaves) == 1 and leaves[0]["topic"] == sub.topic
        assert seen == []
        assert socket.closed

    def test_reconnect_rejoins_every_channel(self):
        """After the server closes the socket, a new one is opened and every channel joins again."""
        async def scenario():
            first, second = FakeSocket(), FakeSocket()
            client = _client([first, second])
            seen = []

            async def handler(event):
                seen.append(event.row_id)

            parts = await client.do_subscribe("parts", "org-1", callback=handler)
            documents = await client.do_subscribe("documents", "org-1", callback=handler)
            first.end()
            await _settle()
            second.push(_change(parts.topic, "parts", "INSERT", {"id": "p9", "org_id": "org-1"}))
            await _settle()
            await client.close()
            return second, parts, documents, seen

        second, parts, documents, seen = asyncio.run(scenario())

        rejoined = second.events("phx_join")
        assert sorted(m["topic"] for m in rejoined) == sorted([parts.topic, documents.topic])
        assert seen == ["p9"]

    def test_malformed_frames_are_skipped(self):
        """Frames that are not JSON or carry an invalid row do not stop the reader."""
        async def scenario():
            socket = FakeSocket()
            client = _client([socket])
            seen = []

            async def handler(event):
                seen.append(event.row_id)

            sub = await client.do_subscribe("parts", "org-1", callback=handler)
            socket._inbox.put_nowait("not json")
            socket.push(["phx_reply"])
            bad = _change(sub.topic, "parts", "INSERT", {})
            bad["payload"]["data"]["record"] = ["p0"]
            socket.push(bad)
            socket.push(_change(sub.topic, "parts", "INSERT", {"id": "p1", "org_id": "org-1"}))
            await _settle()
            alive = not client._reader_task.done()
            await client.close()
            return seen, alive

        assert asyncio.run(scenario()) == (["p1"], True)

    def test_unexpected_reader_error_reconnects(self):
        """An unexpected failure while handling a frame closes the socket and reconnects."""
        async def scenario():
            first, second = FakeSocket(), FakeSocket()
            client = _client([first, second])
            seen = []

            async def handler(event):
                seen.append(event.row_id)

            sub = await client.do_subscribe("parts", "org-1", callback=handler)
            first.push({"topic": sub.topic, "event": "postgres_changes", "payload": "garbled", "ref": None})
            await _settle()
            second.push(_change(sub.topic, "parts", "INSERT", {"id": "p2", "org_id": "org-1"}))
            await _settle()
            await client.close()
            return first, second, sub, seen

        first, second, sub, seen = asyncio.run(scenario())

        assert first.closed
        assert [m["topic"] for m in second.events("phx_join")] == [sub.topic]
        assert seen == ["p2"]

    def test_heartbeat(self):
        async def scenario():
            socket = FakeSocket()
            client = _client([socket], env={"REALTIME_SUPABASE_HEARTBEAT_INTERVAL": "0.01"})
            await client.do_subscribe("parts", "org-1", callback=lambda e: asyncio.sleep(0))
            await asyncio.sleep(0.05)
            await client.close()
            return socket

        heartbeats = asyncio.run(scenario()).events("heartbeat")
        assert heartbeats and heartbeats[0]["topic"] == "phoenix"
