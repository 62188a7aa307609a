from __future__ import annotations

from typing import Union

from chat_client.domain.events.connection import ConnectionStateChanged
from chat_client.domain.events.group import GroupChanged
from chat_client.domain.events.message import MessageDeleted, MessagePushed, MessageRead
from chat_client.domain.events.typing import TypingChanged

ChatEvent = Union[
    MessagePushed,
    MessageRead,
    MessageDeleted,
    GroupChanged,
    TypingChanged,
    ConnectionStateChanged,
]

__all__ = [
    "ChatEvent",
    "ConnectionStateChanged",
    "GroupChanged",
    "MessageDeleted",
    "MessagePushed",
    "MessageRead",
    "TypingChanged",
]
