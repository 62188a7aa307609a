from __future__ import annotations

from typing import Protocol

from chat_client.application.dto.history import HistoryCursor
from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.entities.message import Message


class HistoryFetcher(Protocol):
    async def fetch_page(
        self,
        conversation: ConversationKey,
        cursor: HistoryCursor,
        page_size: int,
    ) -> list[Message]:
        """Return one page of history. Same cursor must give the same page."""
        ...
