from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.value_objects.enums import EventName


@dataclass(frozen=True, slots=True)
class TypingChanged:
    name: EventName
    conversation: ConversationKey
    user_id: int

    @property
    def active(self) -> bool:
        return self.name == EventName.TYPING_START
