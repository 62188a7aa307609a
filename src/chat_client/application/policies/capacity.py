from __future__ import annotations

from chat_client.application.exceptions import CapacityExceededError
from chat_client.domain.entities.conversation import ConversationDescriptor

MAX_OPEN_CONVERSATIONS = 2


def assert_capacity(open_count: int, descriptor: ConversationDescriptor) -> None:
    """Raise if another distinct conversation would exceed the open limit."""
    if open_count >= MAX_OPEN_CONVERSATIONS:
        raise CapacityExceededError(
            f"Maximum {MAX_OPEN_CONVERSATIONS} chats can be open at once. "
            f"Please close one to open {descriptor.name}.",
            limit=MAX_OPEN_CONVERSATIONS,
        )
