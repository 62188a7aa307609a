from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from chat_client.application.dto.outgoing import OutgoingFile
from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.entities.message import Message


class MessageCommands(Protocol):
    async def send(
        self,
        conversation: ConversationKey,
        body: str,
        files: Sequence[OutgoingFile],
        client_msg_id: str,
    ) -> Message:
        """Persist a message and return the authoritative copy."""
        ...

    async def mark_read(self, conversation: ConversationKey, message_id: int) -> None: ...

    async def delete(self, conversation: ConversationKey, message_id: int) -> None: ...
