"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from chat_client.application.dto.history import HistoryCursor
from chat_client.application.dto.outgoing import OutgoingFile
from chat_client.application.exceptions import TransportError
from chat_client.application.ports.transport import DropCallback, RawEventCallback
from chat_client.domain.entities.conversation import ConversationDescriptor, ConversationKey
from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.enums import ConversationKind, DeliveryStatus
from chat_client.services.message_store import MessageStore

LOCAL_USER = 1
PEER = 7
GROUP = 9
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

DIRECT_KEY = ConversationKey(ConversationKind.DIRECT, PEER)
GROUP_KEY = ConversationKey(ConversationKind.GROUP, GROUP)


async def settle(rounds: int = 25) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_descriptor(
    *,
    kind: ConversationKind = ConversationKind.DIRECT,
    conversation_id: int = PEER,
    name: str | None = None,
) -> ConversationDescriptor:
    return ConversationDescriptor(
        kind=kind,
        id=conversation_id,
        name=name or f"{kind.value}-{conversation_id}",
    )


def make_message(
    *,
    message_id: int | None = 1,
    conversation: ConversationKey = DIRECT_KEY,
    sender_id: int = PEER,
    body: str = "hello",
    at: float = 0,
    read_at: datetime | None = None,
    is_deleted: bool = False,
    client_msg_id: str | None = None,
) -> Message:
    return Message(
        id=message_id,
        conversation=conversation,
        sender_id=sender_id,
        body=body,
        created_at=T0 + timedelta(seconds=at),
        read_at=read_at,
        is_deleted=is_deleted,
        client_msg_id=client_msg_id,
    )


def wire_message(
    *,
    message_id: int = 1,
    sender_id: int = PEER,
    receiver_id: int | None = LOCAL_USER,
    group_id: int | None = None,
    body: str = "hello",
    created_at: str = "2024-05-01T12:00:00Z",
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "chat_id": message_id,
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "message": body,
        "created_at": created_at,
        "read_at": None,
    }
    if group_id is not None:
        payload["group_id"] = group_id
    payload.update(extra)
    return payload


@dataclass
class FakeClock:
    current: datetime = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass
class FakeTransport:
    """In-memory Transport: scripted open failures, manual pushes and drops."""
    failures: list[Exception] = field(default_factory=list)
    open_gate: asyncio.Event | None = None
    credentials: list[str] = field(default_factory=list)
    emitted: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    closes: int = 0
    _connected: bool = False
    _on_event: RawEventCallback | None = None
    _on_drop: DropCallback | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def open(self, credential: str, on_event: RawEventCallback, on_drop: DropCallback) -> None:
        self.credentials.append(credential)
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        self._on_event = on_event
        self._on_drop = on_drop
        self._connected = True

    async def close(self) -> None:
        self.closes += 1
        self._connected = False

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self._connected:
            raise TransportError(f"Cannot emit {event}: not connected")
        self.emitted.append((event, data))

    def push(self, wire_name: str, payload: Any) -> None:
        assert self._on_event is not None, "transport was never opened"
        self._on_event(wire_name, payload)

    def drop(self, reason: str = "transport close") -> None:
        self._connected = False
        assert self._on_drop is not None, "transport was never opened"
        self._on_drop(reason)


@dataclass
class FakeChatApi:
    """In-memory HistoryFetcher + MessageCommands + GroupCommands."""
    pages: dict[ConversationKey, list[list[Message]]] = field(default_factory=dict)
    fetch_calls: list[tuple[ConversationKey, int]] = field(default_factory=list)
    fetch_errors: list[Exception] = field(default_factory=list)
    fetch_gate: asyncio.Event | None = None

    sent: list[tuple[ConversationKey, str, str]] = field(default_factory=list)
    send_error: Exception | None = None
    send_gate: asyncio.Event | None = None
    next_id: int = 100

    reads: list[tuple[ConversationKey, int]] = field(default_factory=list)
    read_error: Exception | None = None
    read_gate: asyncio.Event | None = None

    deletes: list[tuple[ConversationKey, int]] = field(default_factory=list)
    delete_error: Exception | None = None

    left_groups: list[int] = field(default_factory=list)
    deleted_groups: list[int] = field(default_factory=list)

    async def fetch_page(self, conversation: ConversationKey, cursor: HistoryCursor, page_size: int) -> list[Message]:
        self.fetch_calls.append((conversation, cursor.page))
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        pages = self.pages.get(conversation, [])
        return list(pages[cursor.page - 1]) if cursor.page <= len(pages) else []

    async def send(
        self,
        conversation: ConversationKey,
        body: str,
        files: Sequence[OutgoingFile],
        client_msg_id: str,
    ) -> Message:
        self.sent.append((conversation, body, client_msg_id))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        self.next_id += 1
        return make_message(
            message_id=self.next_id,
            conversation=conversation,
            sender_id=LOCAL_USER,
            body=body,
            client_msg_id=client_msg_id,
        )

    async def mark_read(self, conversation: ConversationKey, message_id: int) -> None:
        self.reads.append((conversation, message_id))
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_error is not None:
            raise self.read_error

    async def delete(self, conversation: ConversationKey, message_id: int) -> None:
        self.deletes.append((conversation, message_id))
        if self.delete_error is not None:
            raise self.delete_error

    async def leave_group(self, group_id: int) -> None:
        self.left_groups.append(group_id)

    async def delete_group(self, group_id: int) -> None:
        self.deleted_groups.append(group_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def store(api: FakeChatApi, clock: FakeClock) -> MessageStore:
    return MessageStore(
        make_descriptor(),
        local_user_id=LOCAL_USER,
        history=api,
        commands=api,
        clock=clock,
        page_size=2,
        ack_timeout=5,
        typing_ttl=3,
    )


def statuses(store: MessageStore) -> list[DeliveryStatus]:
    return [m.status for m in store.messages]
