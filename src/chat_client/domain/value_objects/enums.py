from __future__ import annotations

from enum import StrEnum


class ConversationKind(StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    FILE = "file"


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class EventName(StrEnum):
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_SENT_ACK = "message.sent.ack"
    MESSAGE_READ = "message.read"
    MESSAGE_DELETED = "message.deleted"
    GROUP_CREATED = "group.created"
    GROUP_MEMBER_ADDED = "group.member.added"
    GROUP_MEMBER_REMOVED = "group.member.removed"
    GROUP_MEMBER_LEFT = "group.member.left"
    GROUP_DELETED = "group.deleted"
    GROUP_MESSAGE_RECEIVED = "group.message.received"
    GROUP_MESSAGE_READ = "group.message.read"
    GROUP_MESSAGE_DELETED = "group.message.deleted"
    TYPING_START = "typing.start"
    TYPING_STOP = "typing.stop"
    CONNECTION_STATE_CHANGED = "connection.state_changed"
