from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import ConversationKind


@dataclass(frozen=True, slots=True)
class ConversationKey:
    kind: ConversationKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"

    @property
    def is_group(self) -> bool:
        return self.kind == ConversationKind.GROUP


@dataclass(frozen=True, slots=True)
class ConversationDescriptor:
    """What the UI knows about a contact or group when opening a chat window."""

    kind: ConversationKind
    id: int
    name: str
    image: str | None = None

    @property
    def key(self) -> ConversationKey:
        return ConversationKey(self.kind, self.id)
