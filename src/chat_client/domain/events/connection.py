from __future__ import annotations

from dataclasses import dataclass, field

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.value_objects.enums import ConnectionState, EventName


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    state: ConnectionState
    previous: ConnectionState
    reason: str = ""
    auth_failure: bool = False
    name: EventName = field(default=EventName.CONNECTION_STATE_CHANGED)

    @property
    def conversation(self) -> ConversationKey | None:
        return None
