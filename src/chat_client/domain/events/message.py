from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.enums import ConversationKind, EventName


@dataclass(frozen=True, slots=True)
class MessagePushed:
    name: EventName
    message: Message

    @property
    def conversation(self) -> ConversationKey:
        return self.message.conversation


@dataclass(frozen=True, slots=True)
class MessageRead:
    name: EventName
    kind: ConversationKind
    message_id: int
    read_at: datetime
    conversation: ConversationKey | None = None


@dataclass(frozen=True, slots=True)
class MessageDeleted:
    name: EventName
    kind: ConversationKind
    message_id: int
    conversation: ConversationKey | None = None
