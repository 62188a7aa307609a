"""Entrypoint: python -m chat_client

Connects as ``USER_ID`` with ``ACCESS_TOKEN`` and logs every inbound chat
event until the session fails or the process is interrupted.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging

from chat_client.application.exceptions import AppError
from chat_client.config import settings
from chat_client.domain.events import ChatEvent, ConnectionStateChanged
from chat_client.domain.value_objects.enums import ConnectionState, EventName
from chat_client.infrastructure.http.chat_api import ChatApiClient
from chat_client.infrastructure.transport.socketio_transport import SocketIOTransport
from chat_client.services.messaging_session import MessagingSession

logger = logging.getLogger(__name__)


def _log_event(event: ChatEvent) -> None:
    logger.info("%s: %s", event.name, event)


async def run_client() -> None:
    if not settings.ACCESS_TOKEN:
        logger.error("ACCESS_TOKEN is not set, nothing to do")
        return

    failed = asyncio.Event()

    def _on_state(event: ConnectionStateChanged) -> None:
        if event.state == ConnectionState.FAILED:
            failed.set()

    async with ChatApiClient(lambda: settings.ACCESS_TOKEN) as api:
        session = MessagingSession(settings.USER_ID, SocketIOTransport(), api)
        session.on_connection_change(_on_state)
        for name in EventName:
            if name != EventName.CONNECTION_STATE_CHANGED:
                session.router.subscribe(name, _log_event)

        logger.info("Chat client starting (user=%d, server=%s)", settings.USER_ID, settings.socket_url)
        try:
            totals = await api.unread_totals()
            logger.info("Unread: %d direct, %d group", totals.direct, totals.group)
        except AppError as exc:
            logger.warning("Could not load unread counts: %s", exc.detail)
        await session.connect(settings.ACCESS_TOKEN)
        try:
            await failed.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await session.disconnect()


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_client())


if __name__ == "__main__":
    main()
