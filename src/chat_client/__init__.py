"""Realtime messaging session core for the field-organisation chat."""
from __future__ import annotations

from chat_client.application.exceptions import (
    AppError,
    AuthenticationError,
    CapacityExceededError,
    CommandRejectedError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from chat_client.domain.entities.conversation import ConversationDescriptor, ConversationKey
from chat_client.domain.entities.group import Group, GroupMember
from chat_client.domain.entities.message import Attachment, Message
from chat_client.domain.entities.summary import RecentChat, UnreadTotals
from chat_client.domain.value_objects.enums import (
    ConnectionState,
    ConversationKind,
    DeliveryStatus,
    EventName,
)
from chat_client.services.messaging_session import MessagingSession

__all__ = [
    "AppError",
    "Attachment",
    "AuthenticationError",
    "CapacityExceededError",
    "CommandRejectedError",
    "ConnectionState",
    "ConversationDescriptor",
    "ConversationKey",
    "ConversationKind",
    "DeliveryStatus",
    "EventName",
    "Group",
    "GroupMember",
    "Message",
    "MessagingSession",
    "NotFoundError",
    "RecentChat",
    "TransportError",
    "UnreadTotals",
    "ValidationError",
]
