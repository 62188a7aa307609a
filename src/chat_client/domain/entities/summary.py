from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.entities.conversation import ConversationKey


@dataclass(frozen=True, slots=True)
class RecentChat:
    """One row of the conversation list: the latest message per direct peer or group."""

    conversation: ConversationKey
    name: str
    image: str | None
    last_message: str
    last_message_type: str
    last_message_at: datetime | None
    unread_count: int = 0

    @property
    def has_unread(self) -> bool:
        return self.unread_count > 0


@dataclass(frozen=True, slots=True)
class UnreadTotals:
    direct: int = 0
    group: int = 0
    total: int = 0
