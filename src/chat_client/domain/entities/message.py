from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.value_objects.enums import DeliveryStatus, MessageType


@dataclass(frozen=True, slots=True)
class Attachment:
    url: str
    name: str
    size: int
    mime_type: str


@dataclass(frozen=True, slots=True)
class Message:
    id: int | None
    conversation: ConversationKey
    sender_id: int
    body: str
    created_at: datetime
    attachments: tuple[Attachment, ...] = ()
    type: MessageType = MessageType.TEXT
    read_at: datetime | None = None
    is_deleted: bool = False
    client_msg_id: str | None = None
    sender_name: str | None = None
    status: DeliveryStatus = DeliveryStatus.SENT

    @property
    def key(self) -> str:
        """Store key: server id once assigned, the temporary client id before."""
        if self.id is not None:
            return str(self.id)
        if self.client_msg_id is None:
            raise ValueError("Message has neither a server id nor a client_msg_id")
        return self.client_msg_id

    @property
    def is_unread(self) -> bool:
        return self.read_at is None

    @property
    def is_optimistic(self) -> bool:
        return self.id is None

    def sort_key(self) -> tuple[Any, ...]:
        # Confirmed messages sort before optimistic ones sharing a timestamp.
        return (
            self.created_at,
            self.id is None,
            self.id if self.id is not None else 0,
            self.client_msg_id or "",
        )

    def attachment_names(self) -> tuple[str, ...]:
        return tuple(a.name for a in self.attachments)
