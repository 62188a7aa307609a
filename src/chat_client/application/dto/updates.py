from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from chat_client.domain.entities.conversation import ConversationKey


class UpdateReason(StrEnum):
    MESSAGES = "messages"
    READ_STATE = "read_state"
    DELIVERY = "delivery"
    TYPING = "typing"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class StoreUpdate:
    conversation: ConversationKey
    reason: UpdateReason
