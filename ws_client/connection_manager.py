"""
Client Connection Manager.

Owns the single long-lived socket to the gateway:
- Resolves the credential from a token provider on every attempt
- Reconnects with exponential backoff and jitter after any disconnect
- Dispatches server events to per-name subscribers
- Sends inbound operations and awaits their acknowledgment
- Answers server heartbeats and keeps the connection from idling out

State machine:
    idle -> connecting -> connected -> disconnected -> connecting ...
    any  -> closed (only after shutdown())

Usage:
    manager = ConnectionManager("ws://localhost:3001/ws", token_provider=lambda: token)
    manager.subscribe(EventName.ORDER_STATUS_UPDATED, on_order)
    await manager.connect()
    ack = await manager.emit("order.status.update", {"orderId": "o1", "status": "READY"})
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.config.logging import ws_client_logger as logger
from shared.config.settings import Settings, settings
from shared.events.schema import BroadcastEvent, parse_event
from shared.utils.exceptions import AckTimeoutError, NotConnectedError
from shared.utils.retry import RetryConfig, calculate_delay_with_jitter, create_client_retry_config

TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]
ConnectFactory = Callable[[str], Awaitable[Any]]
EventSubscriber = Callable[[BroadcastEvent], Any]
StateListener = Callable[["ConnectionState"], Any]

# Close codes the gateway uses to reject a credential
AUTH_CLOSE_CODES = frozenset({4000, 4001})
FORBIDDEN_CLOSE_CODE = 4003
ABNORMAL_CLOSE_CODE = 1006

MSG_NO_TOKEN = "No authentication token available"


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class ErrorKind(str, Enum):
    """Classification of the last connection error."""

    CONFIG = "config"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    SERVER = "server"


@dataclass(frozen=True, slots=True)
class AckResult:
    """Server acknowledgment for an emitted frame."""

    success: bool
    error: str | None = None
    id: str | None = None

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> "AckResult":
        return cls(success=bool(frame.get("success")), error=frame.get("error"), id=frame.get("id"))


@dataclass(frozen=True, slots=True)
class Diagnostics:
    """Snapshot of the manager's state for status displays."""

    state: ConnectionState
    indicator: str
    last_error: str | None
    last_error_kind: ErrorKind | None
    attempt: int
    max_attempts: int
    connected_since: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "indicator": self.indicator,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind.value if self.last_error_kind else None,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "connected_since": self.connected_since,
        }


def classify_close(code: int) -> ErrorKind:
    if code in AUTH_CLOSE_CODES:
        return ErrorKind.AUTH
    if code == FORBIDDEN_CLOSE_CODE:
        return ErrorKind.FORBIDDEN
    if code == ABNORMAL_CLOSE_CODE:
        return ErrorKind.TRANSPORT
    return ErrorKind.SERVER


def with_token(url: str, token: str) -> str:
    """Return url with the `token` query parameter set."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "token"]
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _close_info(exc: ConnectionClosed) -> tuple[int, str]:
    if exc.rcvd is not None:
        return exc.rcvd.code, exc.rcvd.reason
    return ABNORMAL_CLOSE_CODE, "Connection lost"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ConnectionManager:
    """
    One persistent client connection with automatic reconnection.

    Every socket attempt runs inside a task tagged with a generation number.
    reconnect() and shutdown() bump the generation, so the result of a
    superseded attempt is discarded even if it completes after cancellation
    was requested.
    """

    def __init__(
        self,
        url: str,
        token_provider: TokenProvider,
        *,
        retry_config: RetryConfig | None = None,
        connect_timeout: float = 10.0,
        ack_timeout: float = 10.0,
        heartbeat_interval: float | None = 30.0,
        on_auth_error: Callable[[int, str], Any] | None = None,
        connect: ConnectFactory | None = None,
    ) -> None:
        """
        Args:
            url: Gateway socket URL (the token is added as a query parameter).
            token_provider: Returns the current credential, sync or async.
            retry_config: Backoff settings; max_attempts is only reported.
            connect_timeout: Bound on the opening handshake.
            ack_timeout: Default bound for emit() acknowledgments.
            heartbeat_interval: Seconds between client pings (None disables).
            on_auth_error: Called with (close_code, reason) on 4000/4001.
            connect: Factory opening a socket for a URL (defaults to websockets).
        """
        self.url = url
        self._token_provider = token_provider
        self._retry = retry_config or create_client_retry_config()
        self._connect_timeout = connect_timeout
        self._ack_timeout = ack_timeout
        self._heartbeat_interval = heartbeat_interval
        self._on_auth_error = on_auth_error
        self._connect = connect or self._default_connect

        self._state = ConnectionState.IDLE
        self._generation = 0
        self._task: asyncio.Task | None = None
        # Serializes connect/reconnect/shutdown across their suspension points
        self._lifecycle_lock = asyncio.Lock()
        self._ws: Any = None
        self._attempt_token: str | None = None
        self._retry_pending = False

        self._attempt = 0
        self._auth_failures = 0
        self._connect_calls = 0
        self._last_error: str | None = None
        self._last_error_kind: ErrorKind | None = None
        self._connected_since: float | None = None

        self._pending_acks: dict[str, asyncio.Future] = {}
        self._subscribers: dict[str, list[EventSubscriber]] = {}
        self._state_listeners: list[StateListener] = []
        self._subscriber_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        token_provider: TokenProvider,
        config: Settings | None = None,
        **kwargs: Any,
    ) -> "ConnectionManager":
        """Build a manager from the client_* settings. kwargs override them."""
        config = config or settings
        options: dict[str, Any] = {
            "retry_config": create_client_retry_config(
                initial_delay=config.client_initial_delay,
                max_delay=config.client_max_delay,
                max_attempts=config.client_max_attempts,
            ),
            "connect_timeout": config.client_connect_timeout,
            "ack_timeout": config.client_ack_timeout,
            "heartbeat_interval": config.client_heartbeat_interval,
        }
        options.update(kwargs)
        return cls(config.client_ws_url, token_provider, **options)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def connect_calls(self) -> int:
        """Number of physical connection attempts made so far."""
        return self._connect_calls

    @property
    def indicator(self) -> str:
        if self._state == ConnectionState.CONNECTING:
            return "reconnecting"
        if self._state == ConnectionState.DISCONNECTED:
            return "reconnecting" if self._retry_pending else "disconnected"
        return self._state.value

    def diagnostics(self) -> Diagnostics:
        return Diagnostics(
            state=self._state,
            indicator=self.indicator,
            last_error=self._last_error,
            last_error_kind=self._last_error_kind,
            attempt=self._attempt,
            max_attempts=self._retry.max_attempts,
            connected_since=self._connected_since,
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, event_name: str, callback: EventSubscriber) -> Callable[[], None]:
        """Register a callback for one event name. Returns an unsubscribe function."""
        key = getattr(event_name, "value", event_name)
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback notified on every state transition."""
        self._state_listeners.append(listener)

        def remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return remove

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Start connecting. No-op while connecting, connected or closed."""
        async with self._lifecycle_lock:
            await self._connect_locked()

    async def _connect_locked(self) -> None:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.CLOSED):
            return
        if self._task is not None and not self._task.done():
            # A retry is already scheduled
            return

        token = await self._resolve_token()
        if token is None:
            self._record_error(MSG_NO_TOKEN, ErrorKind.CONFIG)
            self._set_state(ConnectionState.IDLE)
            return
        self._start(token)

    async def reconnect(self) -> None:
        """
        Reset backoff and retry immediately.

        While an attempt with the same credential is in flight only the
        backoff is reset; otherwise the running attempt is superseded.
        Concurrent calls are serialized, so at most one attempt is in flight.
        """
        async with self._lifecycle_lock:
            await self._reconnect_locked()

    async def _reconnect_locked(self) -> None:
        if self._state == ConnectionState.CLOSED:
            return

        token = await self._resolve_token()
        self._attempt = 0
        self._auth_failures = 0

        if self._state == ConnectionState.CONNECTING and token is not None and token == self._attempt_token:
            logger.debug("Reconnect requested during identical attempt, backoff reset only")
            return

        await self._supersede()
        if token is None:
            self._record_error(MSG_NO_TOKEN, ErrorKind.CONFIG)
            self._set_state(ConnectionState.IDLE)
            return
        self._start(token)

    async def shutdown(self) -> None:
        """Close the connection for good. The manager cannot be restarted."""
        async with self._lifecycle_lock:
            if self._state == ConnectionState.CLOSED:
                return
            await self._supersede()
            self._set_state(ConnectionState.CLOSED)
        await self._drain_subscriber_tasks()
        logger.info("Connection manager shut down")

    # =========================================================================
    # Sending
    # =========================================================================

    async def emit(self, event_type: str, data: dict[str, Any], timeout: float | None = None) -> AckResult:
        """
        Send an inbound operation and wait for its acknowledgment.

        Raises:
            NotConnectedError: No live connection, or it closed before the ack.
            AckTimeoutError: No acknowledgment within the timeout.
        """
        if self._state != ConnectionState.CONNECTED or self._ws is None:
            raise NotConnectedError(event_type=event_type)

        timeout = self._ack_timeout if timeout is None else timeout
        ack_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending_acks[ack_id] = future

        try:
            await self._ws.send(json.dumps({"type": event_type, "id": ack_id, "data": data}))
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise AckTimeoutError(event_type, timeout) from None
        except ConnectionClosed:
            raise NotConnectedError("Connection closed before acknowledgment", event_type=event_type) from None
        finally:
            self._pending_acks.pop(ack_id, None)

    # =========================================================================
    # Connection task
    # =========================================================================

    def _start(self, token: str) -> None:
        # State changes before the task runs, so a second reconnect() in the
        # same tick sees the in-flight attempt.
        self._generation += 1
        self._attempt_token = token
        self._retry_pending = False
        previous = self._task
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            previous.cancel()
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.create_task(self._run(self._generation, token))

    async def _supersede(self) -> None:
        self._generation += 1
        self._retry_pending = False
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._drop_socket()

    async def _run(self, generation: int, token: str | None) -> None:
        while self._is_current(generation):
            if token is None:
                token = await self._resolve_token()
                if not self._is_current(generation):
                    return
                if token is None:
                    self._record_error(MSG_NO_TOKEN, ErrorKind.CONFIG)
                    self._set_state(ConnectionState.IDLE)
                    return

            self._attempt_token = token
            self._set_state(ConnectionState.CONNECTING)
            ws = await self._open(token)
            if not self._is_current(generation):
                if ws is not None:
                    await self._close_quietly(ws)
                return

            if ws is not None:
                self._on_connected(ws)
                code, reason = await self._session(ws, generation)
                if not self._is_current(generation):
                    return
                self._on_disconnected(code, reason)

            # Backoff, then resolve a possibly refreshed credential
            delay = calculate_delay_with_jitter(max(self._attempt, self._auth_failures), self._retry)
            self._attempt += 1
            if self._attempt == self._retry.max_attempts:
                logger.warning(
                    "Reconnection attempts exceeded budget, still retrying",
                    attempts=self._attempt,
                    max_attempts=self._retry.max_attempts,
                )
            logger.info("Reconnecting", attempt=self._attempt, delay=round(delay, 2))
            self._retry_pending = True
            self._set_state(ConnectionState.DISCONNECTED)
            await asyncio.sleep(delay)
            self._retry_pending = False
            token = None

    async def _open(self, token: str) -> Any:
        """One physical connection attempt. Returns the socket or None."""
        self._connect_calls += 1
        try:
            return await asyncio.wait_for(self._connect(with_token(self.url, token)), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            self._record_error("Connection timed out", ErrorKind.TIMEOUT)
        except ConnectionClosed as e:
            code, reason = _close_info(e)
            self._record_close(code, reason)
        except (OSError, WebSocketException) as e:
            self._record_error(str(e) or type(e).__name__, ErrorKind.TRANSPORT)
        return None

    async def _session(self, ws: Any, generation: int) -> tuple[int, str]:
        """Receive until the socket closes. Returns (close code, reason)."""
        heartbeat = None
        if self._heartbeat_interval:
            heartbeat = asyncio.create_task(self._heartbeat_loop(ws))
        try:
            while True:
                raw = await ws.recv()
                if not self._is_current(generation):
                    return 1000, "Superseded"
                await self._handle_frame(ws, raw)
        except ConnectionClosed as e:
            return _close_info(e)
        except (OSError, WebSocketException) as e:
            return ABNORMAL_CLOSE_CODE, str(e) or type(e).__name__
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)

    async def _heartbeat_loop(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await ws.send(json.dumps({"type": "ping"}))
            except (ConnectionClosed, OSError):
                return

    def _on_connected(self, ws: Any) -> None:
        self._ws = ws
        self._attempt = 0
        self._connected_since = time.time()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to gateway", url=self.url)

    def _on_disconnected(self, code: int, reason: str) -> None:
        self._ws = None
        self._connected_since = None
        self._fail_pending_acks()
        self._record_close(code, reason)

    def _record_close(self, code: int, reason: str) -> None:
        kind = classify_close(code)
        self._record_error(reason or f"Connection closed ({code})", kind)
        logger.info("Disconnected from gateway", code=code, reason=reason, kind=kind.value)

        if kind == ErrorKind.AUTH:
            self._auth_failures += 1
            if self._on_auth_error is not None:
                try:
                    self._on_auth_error(code, reason)
                except Exception:
                    logger.error("Auth error callback failed", exc_info=True)
        else:
            self._auth_failures = 0

    # =========================================================================
    # Frames
    # =========================================================================

    async def _handle_frame(self, ws: Any, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if raw == "pong":
            return
        if raw == "ping":
            await ws.send("pong")
            return

        try:
            frame = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON frame")
            return
        if not isinstance(frame, dict):
            return

        frame_type = frame.get("type")
        if frame_type == "ping":
            await ws.send(json.dumps({"type": "pong"}))
        elif frame_type == "pong":
            return
        elif frame_type == "ack":
            future = self._pending_acks.get(frame.get("id"))
            if future is not None and not future.done():
                future.set_result(AckResult.from_frame(frame))
        elif isinstance(frame_type, str):
            event = parse_event(frame_type, frame.get("data"))
            if event is None:
                logger.debug("Ignoring unknown event", event_type=frame_type)
                return
            self._dispatch(event)

    def _dispatch(self, event: BroadcastEvent) -> None:
        for callback in list(self._subscribers.get(event.name.value, ())):
            try:
                result = callback(event)
            except Exception:
                logger.error("Event subscriber failed", event_type=event.name.value, exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._subscriber_tasks.add(task)
                task.add_done_callback(lambda t, name=event.name.value: self._subscriber_done(t, name))

    def _subscriber_done(self, task: asyncio.Future, event_type: str) -> None:
        self._subscriber_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Event subscriber failed",
                event_type=event_type,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def _drain_subscriber_tasks(self) -> None:
        tasks = [task for task in self._subscriber_tasks if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state != ConnectionState.CLOSED

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.error("State listener failed", state=state.value, exc_info=True)

    def _record_error(self, message: str, kind: ErrorKind) -> None:
        self._last_error = message
        self._last_error_kind = kind

    async def _resolve_token(self) -> str | None:
        try:
            token = await _maybe_await(self._token_provider())
        except Exception:
            logger.error("Token provider failed", exc_info=True)
            return None
        return token or None

    def _fail_pending_acks(self) -> None:
        for future in self._pending_acks.values():
            if not future.done():
                future.set_exception(NotConnectedError("Connection closed before acknowledgment"))
        self._pending_acks.clear()

    async def _drop_socket(self) -> None:
        ws, self._ws = self._ws, None
        self._connected_since = None
        self._fail_pending_acks()
        if ws is not None:
            await self._close_quietly(ws)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError, WebSocketException):
            logger.debug("Socket already closed")

    def _default_connect(self, url: str) -> Awaitable[Any]:
        return websockets.connect(url, open_timeout=None)
