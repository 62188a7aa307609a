"""Lifetime of the single realtime connection behind a messaging session."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from chat_client.application.exceptions import AuthenticationError, TransportError
from chat_client.application.ports.transport import Transport
from chat_client.config import settings
from chat_client.domain.entities.session import Session
from chat_client.domain.events import ConnectionStateChanged
from chat_client.domain.value_objects.enums import ConnectionState
from chat_client.services.event_router import EventRouter

logger = logging.getLogger(__name__)

_LIVE_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.RECONNECTING,
})


class ConnectionManager:
    """Idle → Connecting → Connected → Disconnected → (Reconnecting → Connected | Failed).

    Transport errors are retried up to ``max_attempts`` tries with a fixed
    delay. Authentication errors are never retried: the session goes straight
    to Failed and the transport and subscriptions are torn down. Every state
    change is published through the router as ``ConnectionStateChanged``.
    """

    def __init__(
        self,
        transport: Transport,
        router: EventRouter,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._router = router
        self._max_attempts = max(1, max_attempts if max_attempts is not None else settings.RECONNECT_ATTEMPTS)
        self._retry_delay = retry_delay if retry_delay is not None else settings.RECONNECT_DELAY_SECONDS
        self._connect_timeout = connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT_SECONDS
        self._session: Session | None = None
        self._state = ConnectionState.IDLE
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self, credential: str) -> None:
        if not credential:
            logger.warning("Cannot connect: no credential provided")
            return

        current = self._session
        if current is not None and current.credential == credential and self._state in _LIVE_STATES:
            return
        if current is not None:
            await self._cancel_reconnect()
            await self._transport.close()

        session = Session(credential=credential)
        self._session = session
        await self._router.start()
        await self._establish(session, reconnecting=False)

    async def disconnect(self) -> None:
        """Tear down the transport, drop every subscription, return to Idle."""
        await self._cancel_reconnect()
        await self._transport.close()
        self._session = None
        await self._transition(ConnectionState.IDLE, reason="disconnect requested")
        self._router.clear()
        await self._router.stop()

    async def emit(self, event: str, data: dict[str, Any]) -> bool:
        """Fire-and-forget outbound socket event. False when not connected."""
        if self._state != ConnectionState.CONNECTED:
            return False
        try:
            await self._transport.emit(event, data)
        except TransportError as exc:
            logger.warning("Emit %s failed: %s", event, exc.detail)
            return False
        return True

    # -- internals -----------------------------------------------------------

    async def _establish(self, session: Session, *, reconnecting: bool) -> None:
        await self._transition(
            ConnectionState.RECONNECTING if reconnecting else ConnectionState.CONNECTING,
        )
        while self._session is session:
            session.attempts += 1
            try:
                await asyncio.wait_for(
                    self._transport.open(session.credential, self._router.feed, self._on_drop),
                    timeout=self._connect_timeout,
                )
            except AuthenticationError as exc:
                session.last_error = exc.detail
                logger.error("Credential rejected, not retrying: %s", exc.detail)
                await self._fail(session, exc.detail, auth_failure=True)
                return
            except (TransportError, OSError, asyncio.TimeoutError) as exc:
                session.last_error = str(exc) or type(exc).__name__
                if session.attempts >= self._max_attempts:
                    logger.error(
                        "Giving up after %d connection attempts: %s",
                        session.attempts, session.last_error,
                    )
                    await self._fail(session, session.last_error, auth_failure=False)
                    return
                logger.warning(
                    "Connection attempt %d/%d failed: %s",
                    session.attempts, self._max_attempts, session.last_error,
                )
                await self._transition(ConnectionState.RECONNECTING, reason=session.last_error)
                await asyncio.sleep(self._retry_delay)
                continue
            except Exception as exc:
                session.last_error = str(exc) or type(exc).__name__
                logger.exception("Unexpected error opening the transport")
                await self._fail(session, session.last_error, auth_failure=False)
                return

            if self._session is not session:
                await self._transport.close()
                return
            session.attempts = 0
            session.last_error = None
            await self._transition(ConnectionState.CONNECTED)
            return

    async def _fail(self, session: Session, reason: str, *, auth_failure: bool) -> None:
        if self._session is not session:
            return
        await self._transition(ConnectionState.FAILED, reason=reason, auth_failure=auth_failure)
        await self._transport.close()
        if auth_failure:
            self._router.clear()
            await self._router.stop()

    def _on_drop(self, reason: str) -> None:
        session = self._session
        if session is None or self._state != ConnectionState.CONNECTED:
            return
        self._reconnect_task = asyncio.create_task(
            self._recover(session, reason), name="chat-reconnect",
        )

    async def _recover(self, session: Session, reason: str) -> None:
        await self._transition(ConnectionState.DISCONNECTED, reason=reason)
        if self._session is session:
            await self._establish(session, reconnecting=True)

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _transition(
        self,
        state: ConnectionState,
        *,
        reason: str = "",
        auth_failure: bool = False,
    ) -> None:
        previous = self._state
        if previous == state:
            return
        self._state = state
        if self._session is not None:
            self._session.state = state
        logger.info("Connection %s -> %s%s", previous, state, f" ({reason})" if reason else "")
        await self._router.publish(
            ConnectionStateChanged(
                state=state, previous=previous, reason=reason, auth_failure=auth_failure,
            )
        )
