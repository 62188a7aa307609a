"""Turns raw Socket.IO events into typed chat events."""
from __future__ import annotations

import logging
from typing import Any

from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.events import (
    ChatEvent,
    GroupChanged,
    MessageDeleted,
    MessagePushed,
    MessageRead,
    TypingChanged,
)
from chat_client.domain.value_objects.enums import ConversationKind, EventName
from chat_client.infrastructure.mappers.message import resolve_conversation, wire_to_entity
from chat_client.infrastructure.transport.protocol import (
    GROUP_WIRE_EVENTS,
    INBOUND_EVENTS,
    SELF_EVENTS,
    WireGroupEvent,
    WireMessage,
    WireReceipt,
    WireTyping,
)

logger = logging.getLogger(__name__)

_MESSAGE_EVENTS = frozenset({
    EventName.MESSAGE_RECEIVED,
    EventName.MESSAGE_SENT_ACK,
    EventName.GROUP_MESSAGE_RECEIVED,
})
_READ_EVENTS = {
    EventName.MESSAGE_READ: ConversationKind.DIRECT,
    EventName.GROUP_MESSAGE_READ: ConversationKind.GROUP,
}
_DELETE_EVENTS = {
    EventName.MESSAGE_DELETED: ConversationKind.DIRECT,
    EventName.GROUP_MESSAGE_DELETED: ConversationKind.GROUP,
}
_GROUP_EVENTS = frozenset({
    EventName.GROUP_CREATED,
    EventName.GROUP_MEMBER_ADDED,
    EventName.GROUP_MEMBER_REMOVED,
    EventName.GROUP_MEMBER_LEFT,
    EventName.GROUP_DELETED,
})


class EventDecoder:
    """Decodes wire events for one local user.

    ``decode`` returns None for events that are unknown or irrelevant to this
    user, and raises ``pydantic.ValidationError`` / ``ValueError`` for
    malformed payloads.
    """

    def __init__(self, local_user_id: int, clock: Clock | None = None) -> None:
        self._local_user_id = local_user_id
        self._clock = clock or SystemClock()

    def decode(self, wire_name: str, payload: Any) -> ChatEvent | None:
        name = INBOUND_EVENTS.get(wire_name)
        if name is None:
            logger.debug("Ignoring unknown wire event: %s", wire_name)
            return None

        if name in _MESSAGE_EVENTS:
            wire = WireMessage.model_validate(payload)
            conversation = resolve_conversation(wire, self._local_user_id)
            return MessagePushed(name=name, message=wire_to_entity(wire, conversation))

        if name in _READ_EVENTS:
            kind = _READ_EVENTS[name]
            receipt = WireReceipt.model_validate(payload)
            return MessageRead(
                name=name,
                kind=kind,
                message_id=receipt.message_id,
                read_at=receipt.read_at or self._clock.now(),
                conversation=self._receipt_conversation(kind, receipt),
            )

        if name in _DELETE_EVENTS:
            kind = _DELETE_EVENTS[name]
            receipt = WireReceipt.model_validate(payload)
            return MessageDeleted(
                name=name,
                kind=kind,
                message_id=receipt.message_id,
                conversation=self._receipt_conversation(kind, receipt),
            )

        if name in _GROUP_EVENTS:
            group = WireGroupEvent.model_validate(payload)
            user_id = group.user_id
            if user_id is None and wire_name in SELF_EVENTS:
                user_id = self._local_user_id
            return GroupChanged(
                name=name,
                conversation=ConversationKey(ConversationKind.GROUP, group.group_id),
                group_name=group.group_name,
                user_id=user_id,
                member_ids=tuple(group.member_ids),
            )

        return self._decode_typing(name, wire_name, payload)

    def _decode_typing(self, name: EventName, wire_name: str, payload: Any) -> TypingChanged | None:
        typing = WireTyping.model_validate(payload)
        if typing.user_id == self._local_user_id:
            return None
        if wire_name in GROUP_WIRE_EVENTS:
            if typing.group_id is None:
                raise ValueError(f"{wire_name} without group_id")
            conversation = ConversationKey(ConversationKind.GROUP, typing.group_id)
        else:
            conversation = ConversationKey(ConversationKind.DIRECT, typing.user_id)
        return TypingChanged(name=name, conversation=conversation, user_id=typing.user_id)

    def _receipt_conversation(
        self,
        kind: ConversationKind,
        receipt: WireReceipt,
    ) -> ConversationKey | None:
        if kind == ConversationKind.GROUP:
            if receipt.group_id is None:
                return None
            return ConversationKey(ConversationKind.GROUP, receipt.group_id)

        if receipt.sender_id is None or receipt.receiver_id is None:
            return None
        peer = receipt.receiver_id if receipt.sender_id == self._local_user_id else receipt.sender_id
        return ConversationKey(ConversationKind.DIRECT, peer)
