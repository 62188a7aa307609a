from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.value_objects.enums import EventName


@dataclass(frozen=True, slots=True)
class GroupChanged:
    name: EventName
    conversation: ConversationKey
    group_name: str | None = None
    user_id: int | None = None
    member_ids: tuple[int, ...] = ()
