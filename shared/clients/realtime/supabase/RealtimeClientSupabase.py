import asyncio
import json
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.clients.realtime.RealtimeClientInterface import RealtimeClientInterface
from shared.clients.realtime.models.ChangeEvent import ChangeEvent, Subscription
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import BackendError

PHOENIX_TOPIC = "phoenix"
PROTOCOL_VERSION = "1.0.0"


class RealtimeClientSupabase(RealtimeClientInterface):
    """
    Supabase Realtime over its Phoenix channel protocol.

    One websocket carries every channel. A heartbeat keeps it open; when it
    drops, the reader reconnects with exponential backoff and re-joins all
    active channels.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._heartbeat_interval = float(self.get_config_val("HEARTBEAT_INTERVAL", default=30, val_type="number"))
        self._reconnect_max_delay = float(self.get_config_val("RECONNECT_MAX_DELAY", default=30, val_type="number"))

        self._ws = None
        self._reader_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._closing = False
        self._ref = 0

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Supabase"

    def is_connected(self) -> bool:
        return self._ws is not None

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="HEARTBEAT_INTERVAL", val_type="number", default=30),
            EnvConfig(env_key="RECONNECT_MAX_DELAY", val_type="number", default=30),
        ]

    ################ AUTH ##################
    def _get_auth_header(self, access_token: str | None = None) -> dict:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
        }

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/realtime/v1/api/ping"

    def _get_websocket_url(self) -> str:
        base = self._base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        query = urlencode({"apikey": self._api_key, "vsn": PROTOCOL_VERSION})
        return f"{base}/realtime/v1/websocket?{query}"

    ##########################################
    ############### MESSAGES #################
    ##########################################

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _build_join_message(self, subscription: Subscription) -> dict:
        subscription.join_ref = self._next_ref()
        return {
            "topic": subscription.topic,
            "event": "phx_join",
            "payload": {
                "config": {
                    "broadcast": {"self": False},
                    "presence": {"key": ""},
                    "postgres_changes": [
                        {
                            "event": "*",
                            "schema": "public",
                            "table": subscription.table,
                            "filter": f"org_id=eq.{subscription.org_id}",
                        }
                    ],
                },
                "access_token": subscription.access_token or self._api_key,
            },
            "ref": subscription.join_ref,
            "join_ref": subscription.join_ref,
        }

    def _build_leave_message(self, subscription: Subscription) -> dict:
        return {
            "topic": subscription.topic,
            "event": "phx_leave",
            "payload": {},
            "ref": self._next_ref(),
            "join_ref": subscription.join_ref,
        }

    def _build_heartbeat_message(self) -> dict:
        return {"topic": PHOENIX_TOPIC, "event": "heartbeat", "payload": {}, "ref": self._next_ref()}

    def _parse_change(self, payload: dict) -> ChangeEvent | None:
        """
        Extract the row change from a ``postgres_changes`` payload.

        Returns:
            ChangeEvent | None: The change, or None when the payload carries no row data.
        """
        data = payload.get("data") or {}
        if not data.get("table") or data.get("type") not in ("INSERT", "UPDATE", "DELETE"):
            return None
        return ChangeEvent(
            table=data["table"],
            event_type=data["type"],
            record=data.get("record") or {},
            old_record=data.get("old_record") or {},
            commit_timestamp=data.get("commit_timestamp"),
        )

    ##########################################
    ############### TRANSPORT ################
    ##########################################

    async def _open_socket(self):
        try:
            return await websockets.connect(self._get_websocket_url())
        except (OSError, WebSocketException) as e:
            raise BackendError(f"Realtime connection failed: {e}") from e

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            self._closing = False
            self._ws = await self._open_socket()
            self.logging.info("Connected to realtime feed at %s", self._base_url)
            self._reader_task = asyncio.create_task(self._run_reader())
            self._heartbeat_task = asyncio.create_task(self._run_heartbeat())

    async def _send(self, message: dict) -> None:
        if self._ws is None:
            return
        await self._ws.send(json.dumps(message))

    async def _send_join(self, subscription: Subscription) -> None:
        subscription.joined = False
        try:
            await self._send(self._build_join_message(subscription))
        except ConnectionClosed as e:
            # the reader re-joins every registered channel after reconnecting
            self.logging.warning("Join of %s deferred, connection closed: %s", subscription.topic, e)

    async def _do_join(self, subscription: Subscription) -> None:
        await self._ensure_connected()
        await self._send_join(subscription)

    async def _do_leave(self, subscription: Subscription) -> None:
        try:
            await self._send(self._build_leave_message(subscription))
        except ConnectionClosed:
            self.logging.debug("Leave of %s skipped, connection already closed", subscription.topic)

    async def _do_disconnect(self) -> None:
        self._closing = True
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._heartbeat_task = None
        self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            self.logging.info("Disconnected from realtime feed")

    ##########################################
    ########### BACKGROUND TASKS #############
    ##########################################

    async def _handle_message(self, raw: str | bytes) -> None:
        message = json.loads(raw)
        if not isinstance(message, dict):
            self.logging.warning("Ignoring realtime frame that is not an object: %.200s", raw)
            return
        topic = message.get("topic", "")
        event = message.get("event")
        payload = message.get("payload") or {}

        if event == "postgres_changes":
            change = self._parse_change(payload)
            if change is not None:
                await self.do_dispatch(topic, change)
        elif event == "phx_reply":
            subscription = self._subscriptions.get(topic)
            if subscription is None or message.get("ref") != subscription.join_ref:
                return
            if payload.get("status") == "ok":
                subscription.joined = True
                self.logging.debug("Joined %s", topic)
            else:
                self.logging.error("Join of %s rejected: %s", topic, payload.get("response"))
        elif event in ("phx_error", "phx_close"):
            subscription = self._subscriptions.get(topic)
            if subscription is not None:
                subscription.joined = False
                self.logging.warning("Channel %s reported %s", topic, event)
        elif event == "system" and payload.get("status") == "error":
            self.logging.error("Realtime system error on %s: %s", topic, payload.get("message"))

    async def _run_reader(self) -> None:
        while not self._closing:
            ws = self._ws
            try:
                async for raw in ws:
                    try:
                        await self._handle_message(raw)
                    except (json.JSONDecodeError, ValidationError) as e:
                        self.logging.warning("Skipping malformed realtime frame: %s", e)
                self.logging.warning("Realtime connection closed by server")
            except ConnectionClosed as e:
                self.logging.warning("Realtime connection dropped: %s", e)
            except Exception as e:
                self.logging.exception("Realtime reader failed, reconnecting: %s", e)
                await self._do_close_socket(ws)
            if self._closing:
                return
            await self._do_reconnect()

    async def _do_close_socket(self, ws) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as e:
            self.logging.debug("Closing broken realtime socket failed: %s", e)

    async def _do_reconnect(self) -> None:
        """
        Reopen the socket with exponential backoff, then re-join every active channel.
        """
        delay = 1.0
        attempt = 0
        while not self._closing:
            attempt += 1
            try:
                self._ws = await self._open_socket()
            except BackendError as e:
                self.logging.warning("Realtime reconnect attempt %d failed: %s. Retrying in %.1fs", attempt, e, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._reconnect_max_delay)
                continue

            self.logging.info("Realtime connection re-established after %d attempt(s)", attempt)
            for subscription in list(self._subscriptions.values()):
                await self._send_join(subscription)
            return

    async def _run_heartbeat(self) -> None:
        while not self._closing:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self._send(self._build_heartbeat_message())
            except ConnectionClosed:
                self.logging.debug("Heartbeat skipped, connection closed")
