from __future__ import annotations

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.entities.message import Attachment, Message
from chat_client.domain.value_objects.enums import ConversationKind, DeliveryStatus, MessageType
from chat_client.infrastructure.transport.protocol import WireAttachment, WireMessage


def resolve_conversation(wire: WireMessage, local_user_id: int) -> ConversationKey:
    """Group messages key on the group; direct ones on whoever is not us."""
    if wire.is_group:
        return ConversationKey(ConversationKind.GROUP, wire.group_id)
    if wire.sender_id == local_user_id:
        if wire.receiver_id is None:
            raise ValueError("Own direct message without receiver_id")
        return ConversationKey(ConversationKind.DIRECT, wire.receiver_id)
    return ConversationKey(ConversationKind.DIRECT, wire.sender_id)


def _message_type(raw: str) -> MessageType:
    try:
        return MessageType(raw)
    except ValueError:
        return MessageType.FILE


def _attachment(wire: WireAttachment) -> Attachment:
    return Attachment(url=wire.url, name=wire.name, size=wire.size, mime_type=wire.type)


def wire_to_entity(wire: WireMessage, conversation: ConversationKey) -> Message:
    return Message(
        id=wire.message_id,
        conversation=conversation,
        sender_id=wire.sender_id,
        body=wire.message or "",
        created_at=wire.created_at,
        attachments=tuple(_attachment(f) for f in wire.files or ()),
        type=_message_type(wire.message_type),
        read_at=wire.read_at,
        is_deleted=bool(wire.is_delete),
        client_msg_id=wire.client_msg_id,
        sender_name=wire.sender_name,
        status=DeliveryStatus.SENT,
    )
