"""
Resilient WebSocket connection shared by the crypto and prediction-market feeds.

Wraps websocket-client's WebSocketApp with:
- exponential reconnect backoff capped at 30s, up to a maximum attempt count
- a 30s heartbeat ping while open
- channel subscriptions remembered and replayed after every reconnect

State machine: IDLE -> CONNECTING -> OPEN -> CLOSING -> IDLE. The
should_reconnect flag is orthogonal and only cleared by disconnect() or by
exhausting reconnect attempts.
"""
import json
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import websocket

from .models import ConnectionEvent, ConnectionEventKind
from ..config import HEARTBEAT_INTERVAL_SECONDS, MAX_RECONNECT_ATTEMPTS

logger = logging.getLogger(__name__)

BASE_RECONNECT_DELAY_MS = 1000
MAX_RECONNECT_DELAY_MS = 30000

# Builds the wire payload for (channel, ids). None means nothing to send.
SubscriptionBuilder = Callable[[str, List[str]], Optional[Any]]


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


def reconnect_delay_ms(attempt: int) -> int:
    """
    Backoff delay before reconnect attempt number `attempt` (1-indexed).

    1s, 2s, 4s, 8s, 16s, then 30s for every later attempt.
    """
    attempt = max(attempt, 1)
    return min(BASE_RECONNECT_DELAY_MS * 2 ** (attempt - 1), MAX_RECONNECT_DELAY_MS)


def _daemon_timer(interval: float, function: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


class StreamConnection:
    """
    Long-lived WebSocket connection with backoff, heartbeat and subscription replay.

    Callbacks from the transport thread never raise: message handler errors
    are logged and the message is dropped.

    Example:
        conn = StreamConnection(
            url="wss://stream.binance.com:9443/ws/btcusdt@aggTrade",
            name="binance",
            on_message=handle_raw,
            on_event=events.put,
        )
        conn.connect()
        ...
        conn.disconnect()
    """

    def __init__(
        self,
        url: str,
        name: str,
        on_message: Callable[[str], None],
        on_event: Optional[Callable[[ConnectionEvent], None]] = None,
        subscription_builder: Optional[SubscriptionBuilder] = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        app_factory: Optional[Callable[..., Any]] = None,
        timer_factory: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ):
        """
        Initialize the connection (does not connect).

        Args:
            url: WebSocket URL
            name: Short feed name used in logs and events
            on_message: Called with each text payload
            on_event: Receives ConnectionEvent notifications
            subscription_builder: Encodes remembered subscriptions for sending
            max_reconnect_attempts: Attempts before giving up
            heartbeat_interval: Seconds between pings while open
            app_factory: Creates the transport (default websocket.WebSocketApp)
            timer_factory: Creates startable/cancellable timers (default threading.Timer)
        """
        self.url = url
        self.name = name
        self.max_reconnect_attempts = max_reconnect_attempts
        self.heartbeat_interval = heartbeat_interval

        self._message_handler = on_message
        self._event_handler = on_event
        self._subscription_builder = subscription_builder
        self._app_factory = app_factory or websocket.WebSocketApp
        self._timer_factory = timer_factory or _daemon_timer

        self.state = ConnectionState.IDLE
        self.should_reconnect = False
        self.reconnect_attempts = 0
        self.messages_received = 0
        self.last_ping_at: Optional[float] = None

        self._subscriptions: Dict[str, Set[str]] = {}
        self._app: Optional[Any] = None
        self._thread: Optional[threading.Thread] = None
        self._heartbeat_timer: Optional[Any] = None
        self._reconnect_timer: Optional[Any] = None
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def subscriptions(self) -> Dict[str, Set[str]]:
        """Copy of the remembered channel -> ids map."""
        with self._lock:
            return {channel: set(ids) for channel, ids in self._subscriptions.items()}

    def connect(self) -> None:
        """Open the connection. No-op while already open or connecting."""
        with self._lock:
            if self.state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
                logger.debug(f"[{self.name}] connect() ignored, state={self.state.value}")
                return
            self.should_reconnect = True
            self._open_transport()

    def disconnect(self) -> None:
        """Close the connection and cancel every pending timer. No reconnect follows."""
        with self._lock:
            self.should_reconnect = False
            self._cancel_reconnect()
            self._stop_heartbeat()
            app = self._app
            if app is not None:
                self.state = ConnectionState.CLOSING
                try:
                    app.close()
                except Exception as e:
                    logger.warning(f"[{self.name}] Error closing socket: {e}")
            self._app = None
            self.state = ConnectionState.IDLE
        logger.info(f"[{self.name}] Disconnected")

    def subscribe(self, channel: str, ids: List[str]) -> None:
        """
        Remember a subscription and send it now if open.

        Subscriptions made while not open are sent on the next open.
        """
        new_ids = [i for i in ids if i]
        if not new_ids:
            return
        with self._lock:
            self._subscriptions.setdefault(channel, set()).update(new_ids)
            if self.state == ConnectionState.OPEN:
                self._send_subscription(channel, new_ids)

    def unsubscribe(self, channel: str, ids: List[str]) -> None:
        """Forget ids so they are not replayed on reconnect."""
        with self._lock:
            remaining = self._subscriptions.get(channel)
            if remaining is None:
                return
            remaining.difference_update(ids)
            if not remaining:
                del self._subscriptions[channel]

    def send(self, payload: Any) -> bool:
        """
        Send a payload if open. Dicts and lists are JSON encoded.

        Returns:
            True if the payload was handed to the transport
        """
        with self._lock:
            if self.state != ConnectionState.OPEN or self._app is None:
                return False
            if not isinstance(payload, (str, bytes)):
                payload = json.dumps(payload)
            try:
                self._app.send(payload)
                return True
            except Exception as e:
                logger.warning(f"[{self.name}] Send failed: {e}")
                return False

    # -------------------------------------------------------------------------
    # Transport lifecycle
    # -------------------------------------------------------------------------

    def _open_transport(self) -> None:
        previous = self._app
        self._app = None
        if previous is not None:
            try:
                previous.close()
            except Exception as e:
                logger.debug(f"[{self.name}] Closing previous socket failed: {e}")
        self.state = ConnectionState.CONNECTING
        logger.info(f"[{self.name}] Connecting to {self.url}")
        self._app = self._app_factory(
            self.url,
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
            on_ping=self._on_ping,
        )
        self._thread = threading.Thread(
            target=self._run_transport,
            args=(self._app,),
            name=f"{self.name}-ws",
            daemon=True,
        )
        self._thread.start()

    def _run_transport(self, app: Any) -> None:
        try:
            app.run_forever()
        except Exception as e:
            logger.error(f"[{self.name}] Transport crashed: {e}")
            self._on_error(app, e)

    def _is_stale(self, ws: Any) -> bool:
        """Callbacks from a replaced transport are ignored."""
        return ws is not self._app

    def _on_open(self, ws) -> None:
        with self._lock:
            if self._is_stale(ws):
                return
            self.state = ConnectionState.OPEN
            self.reconnect_attempts = 0
            self._start_heartbeat()
            for channel, ids in self._subscriptions.items():
                self._send_subscription(channel, sorted(ids))
        logger.info(f"[{self.name}] Connected")
        self._emit(ConnectionEventKind.CONNECTED)

    def _on_message(self, ws, message) -> None:
        if self._is_stale(ws):
            return
        self.messages_received += 1
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        try:
            self._message_handler(message)
        except Exception as e:
            logger.error(f"[{self.name}] Dropped message after handler error: {e}")

    def _on_error(self, ws, error) -> None:
        if self._is_stale(ws):
            return
        logger.warning(f"[{self.name}] Transport error: {error}")
        self._emit(ConnectionEventKind.ERROR, str(error))
        self._handle_drop()

    def _on_close(self, ws, close_status_code=None, close_msg=None) -> None:
        if self._is_stale(ws):
            return
        with self._lock:
            self._stop_heartbeat()
            self.state = ConnectionState.IDLE
        logger.info(f"[{self.name}] Closed: {close_status_code} - {close_msg}")
        self._emit(ConnectionEventKind.DISCONNECTED, f"{close_status_code} {close_msg or ''}".strip())
        self._handle_drop()

    def _on_ping(self, ws, message) -> None:
        # websocket-client replies with the pong itself
        self.last_ping_at = time.time()

    # -------------------------------------------------------------------------
    # Reconnect
    # -------------------------------------------------------------------------

    def _handle_drop(self) -> None:
        """Schedule a reconnect, or give up once attempts are exhausted."""
        with self._lock:
            if not self.should_reconnect or self._reconnect_timer is not None:
                return
            self._stop_heartbeat()
            self.state = ConnectionState.IDLE

            if self.reconnect_attempts >= self.max_reconnect_attempts:
                self.should_reconnect = False
                logger.error(
                    f"[{self.name}] Giving up after {self.reconnect_attempts} reconnect attempts"
                )
                fatal = True
            else:
                fatal = False
                self.reconnect_attempts += 1
                delay_ms = reconnect_delay_ms(self.reconnect_attempts)
                logger.info(
                    f"[{self.name}] Reconnecting in {delay_ms}ms "
                    f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})"
                )
                self._reconnect_timer = self._timer_factory(delay_ms / 1000, self._reconnect)
                self._reconnect_timer.start()

        if fatal:
            self._emit(ConnectionEventKind.MAX_RECONNECT_ATTEMPTS, str(self.reconnect_attempts))
        else:
            self._emit(ConnectionEventKind.RECONNECTING, str(self.reconnect_attempts))

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if not self.should_reconnect:
                return
            if self.state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
                return
            self._open_transport()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    # -------------------------------------------------------------------------
    # Heartbeat
    # -------------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_timer = self._timer_factory(self.heartbeat_interval, self._heartbeat)
        self._heartbeat_timer.start()

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _heartbeat(self) -> None:
        with self._lock:
            if self.state != ConnectionState.OPEN or self._app is None:
                return
            try:
                self._app.send("", websocket.ABNF.OPCODE_PING)
            except Exception as e:
                logger.warning(f"[{self.name}] Heartbeat ping failed: {e}")
            self._start_heartbeat()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _send_subscription(self, channel: str, ids: List[str]) -> None:
        if self._subscription_builder is None:
            return
        payload = self._subscription_builder(channel, ids)
        if payload is None:
            return
        if not isinstance(payload, (str, bytes)):
            payload = json.dumps(payload)
        try:
            self._app.send(payload)
            logger.debug(f"[{self.name}] Subscribed {channel}: {len(ids)} ids")
        except Exception as e:
            logger.warning(f"[{self.name}] Subscription to {channel} failed: {e}")

    def _emit(self, kind: ConnectionEventKind, detail: str = "") -> None:
        if self._event_handler is None:
            return
        try:
            self._event_handler(ConnectionEvent(feed=self.name, kind=kind, detail=detail))
        except Exception as e:
            logger.error(f"[{self.name}] Event handler error: {e}")
