"""Application-facing facade wiring connection, router, registry and stores."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Callable, Protocol

from chat_client.application.dto.outgoing import OutgoingFile
from chat_client.application.exceptions import AppError, ValidationError
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.application.ports.commands import MessageCommands
from chat_client.application.ports.groups import GroupCommands
from chat_client.application.ports.history import HistoryFetcher
from chat_client.application.ports.transport import Transport
from chat_client.config import settings
from chat_client.domain.entities.conversation import ConversationDescriptor, ConversationKey
from chat_client.domain.entities.message import Message
from chat_client.domain.events import ConnectionStateChanged, GroupChanged
from chat_client.domain.value_objects.enums import ConnectionState, EventName
from chat_client.infrastructure.transport.decoder import EventDecoder
from chat_client.infrastructure.transport.protocol import TYPING_EVENTS
from chat_client.services.connection_manager import ConnectionManager
from chat_client.services.conversation_registry import ConversationHandle, ConversationRegistry
from chat_client.services.event_router import EventRouter
from chat_client.services.message_store import MessageStore, UpdateListener

logger = logging.getLogger(__name__)

ConnectionListener = Callable[[ConnectionStateChanged], None]

_CLOSING_GROUP_EVENTS = (
    EventName.GROUP_DELETED,
    EventName.GROUP_MEMBER_LEFT,
    EventName.GROUP_MEMBER_REMOVED,
)


class ChatApi(HistoryFetcher, MessageCommands, GroupCommands, Protocol):
    """Anything that serves history pages, message commands and group commands."""


class MessagingSession:
    """One user's realtime chat session.

    Owned by the application root. The UI opens at most two conversations,
    subscribes to their ``StoreUpdate`` notifications and issues commands by
    conversation key; the shell listens to connection changes for its
    connectivity banner and forced logout.
    """

    def __init__(
        self,
        local_user_id: int,
        transport: Transport,
        api: ChatApi,
        *,
        clock: Clock | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        connect_timeout: float | None = None,
        page_size: int | None = None,
        ack_timeout: float | None = None,
        typing_ttl: float | None = None,
    ) -> None:
        self._local_user_id = local_user_id
        self._api = api
        self._clock = clock or SystemClock()
        self._page_size = page_size
        self._ack_timeout = ack_timeout
        self._typing_ttl = typing_ttl if typing_ttl is not None else settings.TYPING_INDICATOR_SECONDS

        self._router = EventRouter(EventDecoder(local_user_id, self._clock))
        self._connection = ConnectionManager(
            transport,
            self._router,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            connect_timeout=connect_timeout,
        )
        self._registry = ConversationRegistry(self._router, self._create_store)
        self._connection_listeners: list[ConnectionListener] = []
        self._typing_tasks: dict[ConversationKey, asyncio.Task[None]] = {}
        self._install_handlers()

    @property
    def local_user_id(self) -> int:
        return self._local_user_id

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def registry(self) -> ConversationRegistry:
        return self._registry

    # -- connection ----------------------------------------------------------

    async def connect(self, credential: str) -> None:
        self._install_handlers()
        await self._connection.connect(credential)

    async def disconnect(self) -> None:
        self._cancel_typing()
        self._registry.close_all()
        await self._connection.disconnect()

    def on_connection_change(self, listener: ConnectionListener) -> None:
        if listener not in self._connection_listeners:
            self._connection_listeners.append(listener)

    def remove_connection_listener(self, listener: ConnectionListener) -> None:
        if listener in self._connection_listeners:
            self._connection_listeners.remove(listener)

    # -- conversations -------------------------------------------------------

    async def open(self, descriptor: ConversationDescriptor, *, preload: bool = True) -> ConversationHandle:
        already_open = descriptor.key in self._registry
        handle = self._registry.open(descriptor)
        if preload and not already_open:
            try:
                await handle.store.load_older()
            except AppError as exc:
                logger.warning("Initial history for %s failed: %s", handle.key, exc.detail)
        return handle

    def close(self, key: ConversationKey) -> bool:
        self._cancel_typing(key)
        return self._registry.close(key)

    def get(self, key: ConversationKey) -> ConversationHandle:
        return self._registry.get(key)

    def subscribe(self, key: ConversationKey, on_update: UpdateListener) -> None:
        self._registry.get(key).store.subscribe(on_update)

    def unsubscribe(self, key: ConversationKey, on_update: UpdateListener) -> None:
        if key in self._registry:
            self._registry.get(key).store.unsubscribe(on_update)

    # -- commands ------------------------------------------------------------

    def send(self, key: ConversationKey, text: str, files: Sequence[OutgoingFile] = ()) -> Message:
        return self._store(key).send(text, files)

    def retry(self, key: ConversationKey, client_msg_id: str) -> Message:
        return self._store(key).retry(client_msg_id)

    async def mark_read(self, key: ConversationKey, message_id: int) -> bool:
        return await self._store(key).mark_read(message_id)

    async def mark_all_read(self, key: ConversationKey) -> int:
        return await self._store(key).mark_all_read()

    async def load_older(self, key: ConversationKey) -> list[Message]:
        return await self._store(key).load_older()

    async def delete(self, key: ConversationKey, message_id: int) -> bool:
        return await self._store(key).delete(message_id)

    async def notify_typing(self, key: ConversationKey) -> None:
        """Tell the peer we are typing; the stop event follows after a quiet period."""
        self._store(key)
        await self._connection.emit(TYPING_EVENTS[(key.kind, True)], _typing_payload(key))
        self._cancel_typing(key)
        self._typing_tasks[key] = asyncio.create_task(
            self._stop_typing_later(key), name=f"typing-{key}",
        )

    # -- groups --------------------------------------------------------------

    async def leave_group(self, key: ConversationKey) -> None:
        """Leave a group and close its conversation if it is open."""
        await self._api.leave_group(self._group_id(key))
        self.close(key)

    async def delete_group(self, key: ConversationKey) -> None:
        await self._api.delete_group(self._group_id(key))
        self.close(key)

    # -- internals -----------------------------------------------------------

    def _create_store(self, descriptor: ConversationDescriptor) -> MessageStore:
        store = MessageStore(
            descriptor,
            local_user_id=self._local_user_id,
            history=self._api,
            commands=self._api,
            clock=self._clock,
            page_size=self._page_size,
            ack_timeout=self._ack_timeout,
            typing_ttl=self._typing_ttl,
        )
        if self._connection.state in (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING):
            store.suspend_outbound()
        return store

    def _store(self, key: ConversationKey) -> MessageStore:
        return self._registry.get(key).store

    @staticmethod
    def _group_id(key: ConversationKey) -> int:
        if not key.is_group:
            raise ValidationError(f"{key} is not a group conversation")
        return key.id

    def _install_handlers(self) -> None:
        # The router is cleared on disconnect; subscribing again is a no-op otherwise.
        self._router.subscribe(EventName.CONNECTION_STATE_CHANGED, self._on_connection_state)
        for name in _CLOSING_GROUP_EVENTS:
            self._router.subscribe(name, self._on_group_event)

    def _on_connection_state(self, event: ConnectionStateChanged) -> None:
        if event.state == ConnectionState.DISCONNECTED:
            for handle in self._registry.handles():
                handle.store.suspend_outbound()
        elif event.state == ConnectionState.CONNECTED:
            for handle in self._registry.handles():
                handle.store.resume_outbound()
        elif event.state == ConnectionState.FAILED and event.auth_failure:
            self._cancel_typing()
            self._registry.close_all()
        elif event.state == ConnectionState.FAILED:
            for handle in self._registry.handles():
                handle.store.abandon_outbound()

        for listener in list(self._connection_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Connection listener failed on %s", event.state)

    def _on_group_event(self, event: GroupChanged) -> None:
        if event.conversation not in self._registry:
            return
        if event.name != EventName.GROUP_DELETED and event.user_id != self._local_user_id:
            return
        logger.info("Closing %s after %s", event.conversation, event.name)
        self.close(event.conversation)

    async def _stop_typing_later(self, key: ConversationKey) -> None:
        await asyncio.sleep(self._typing_ttl)
        self._typing_tasks.pop(key, None)
        await self._connection.emit(TYPING_EVENTS[(key.kind, False)], _typing_payload(key))

    def _cancel_typing(self, key: ConversationKey | None = None) -> None:
        keys = [key] if key is not None else list(self._typing_tasks)
        for k in keys:
            task = self._typing_tasks.pop(k, None)
            if task is not None and task is not asyncio.current_task():
                task.cancel()


def _typing_payload(key: ConversationKey) -> dict[str, Any]:
    if key.is_group:
        return {"group_id": key.id}
    return {"receiver_id": key.id}
