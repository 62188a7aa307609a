from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.value_objects.enums import ConversationKind


@dataclass(frozen=True, slots=True)
class Group:
    id: int
    name: str
    created_by: int | None = None
    created_by_name: str | None = None
    created_at: datetime | None = None
    member_count: int = 0

    @property
    def key(self) -> ConversationKey:
        return ConversationKey(ConversationKind.GROUP, self.id)


@dataclass(frozen=True, slots=True)
class GroupMember:
    user_id: int
    name: str
    email: str | None = None
    image: str | None = None
    added_at: datetime | None = None
    is_active: bool = True
