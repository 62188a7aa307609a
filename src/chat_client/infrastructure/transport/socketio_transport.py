"""python-socketio implementation of the Transport port."""
from __future__ import annotations

import contextlib
import logging
from collections.abc import Sequence
from typing import Any, Callable, Coroutine

import socketio

from chat_client.application.exceptions import AuthenticationError, TransportError
from chat_client.application.ports.transport import DropCallback, RawEventCallback
from chat_client.config import settings
from chat_client.infrastructure.transport.protocol import INBOUND_EVENTS

logger = logging.getLogger(__name__)

# Connect errors that mean the credential itself is bad; retrying cannot help.
AUTH_FAILURE_MARKERS = (
    "user not found",
    "session id unknown",
    "unauthorized",
    "invalid token",
    "authentication",
)


def is_auth_failure(reason: str) -> bool:
    lowered = reason.lower()
    return any(marker in lowered for marker in AUTH_FAILURE_MARKERS)


def _reason(data: Any) -> str:
    if isinstance(data, dict):
        return str(data.get("message", data))
    return str(data)


def _default_client() -> socketio.AsyncClient:
    # Reconnection is owned by ConnectionManager's bounded policy.
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)


class SocketIOTransport:
    """One Socket.IO connection at a time, authenticated with ``auth={"token": ...}``."""

    def __init__(
        self,
        url: str | None = None,
        *,
        socketio_path: str | None = None,
        transports: Sequence[str] | None = None,
        connect_timeout: float | None = None,
        wire_names: Sequence[str] | None = None,
        client_factory: Callable[[], Any] = _default_client,
    ) -> None:
        self._url = url or settings.socket_url
        self._socketio_path = socketio_path or settings.SOCKET_PATH
        self._transports = list(transports or settings.SOCKET_TRANSPORTS)
        self._connect_timeout = connect_timeout or settings.CONNECT_TIMEOUT_SECONDS
        self._wire_names = tuple(wire_names or INBOUND_EVENTS)
        self._client_factory = client_factory
        self._client: Any | None = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    async def open(
        self,
        credential: str,
        on_event: RawEventCallback,
        on_drop: DropCallback,
    ) -> None:
        if self._client is not None:
            await self.close()

        client = self._client_factory()
        connect_errors: list[str] = []

        async def _on_connect_error(data: Any = None) -> None:
            connect_errors.append(_reason(data))
            logger.warning("Socket connection error: %s", _reason(data))

        async def _on_disconnect(*args: Any) -> None:
            if self._client is not client or self._closing:
                return
            self._client = None
            reason = str(args[0]) if args else "transport closed"
            logger.info("Socket disconnected: %s", reason)
            on_drop(reason)

        client.on("connect_error", _on_connect_error)
        client.on("disconnect", _on_disconnect)
        for wire_name in self._wire_names:
            client.on(wire_name, self._build_forwarder(wire_name, on_event))

        try:
            await client.connect(
                self._url,
                auth={"token": credential},
                transports=self._transports,
                socketio_path=self._socketio_path,
                wait_timeout=self._connect_timeout,
            )
        except socketio.exceptions.ConnectionError as exc:
            reason = "; ".join([str(exc), *connect_errors])
            await self._discard(client)
            if is_auth_failure(reason):
                raise AuthenticationError(reason) from exc
            raise TransportError(reason) from exc

        self._client = client
        logger.info("Socket connected: %s", getattr(client, "sid", None))

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        self._closing = True
        try:
            await client.disconnect()
        finally:
            self._closing = False

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self.connected:
            raise TransportError(f"Cannot emit {event}: not connected")
        await self._client.emit(event, data)

    @staticmethod
    def _build_forwarder(
        wire_name: str,
        on_event: RawEventCallback,
    ) -> Callable[[Any], Coroutine[Any, Any, None]]:
        async def handler(data: Any = None) -> None:
            on_event(wire_name, data)
        return handler

    @staticmethod
    async def _discard(client: Any) -> None:
        with contextlib.suppress(Exception):
            await client.disconnect()
