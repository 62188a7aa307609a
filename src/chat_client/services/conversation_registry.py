"""The bounded set of open conversations and their event subscriptions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from chat_client.application.exceptions import NotFoundError
from chat_client.application.policies.capacity import assert_capacity
from chat_client.domain.entities.conversation import ConversationDescriptor, ConversationKey
from chat_client.domain.value_objects.enums import EventName
from chat_client.services.event_router import EventRouter
from chat_client.services.message_store import MessageStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[ConversationDescriptor], MessageStore]

# Events a conversation's store consumes.
ROUTED_EVENTS = (
    EventName.MESSAGE_RECEIVED,
    EventName.MESSAGE_SENT_ACK,
    EventName.MESSAGE_READ,
    EventName.MESSAGE_DELETED,
    EventName.GROUP_MESSAGE_RECEIVED,
    EventName.GROUP_MESSAGE_READ,
    EventName.GROUP_MESSAGE_DELETED,
    EventName.TYPING_START,
    EventName.TYPING_STOP,
)


@dataclass(frozen=True, slots=True)
class ConversationHandle:
    descriptor: ConversationDescriptor
    store: MessageStore

    @property
    def key(self) -> ConversationKey:
        return self.descriptor.key


class ConversationRegistry:
    """Sole owner of open/close transitions.

    Each open conversation gets one router subscription that forwards only the
    events addressed to it. Receipts that carry no resolvable conversation go
    to every open store of the same kind; stores ignore ids they do not hold.
    """

    def __init__(self, router: EventRouter, store_factory: StoreFactory) -> None:
        self._router = router
        self._store_factory = store_factory
        self._open: dict[ConversationKey, ConversationHandle] = {}
        self._filters: dict[ConversationKey, Callable[[Any], None]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._open

    def __len__(self) -> int:
        return len(self._open)

    def keys(self) -> list[ConversationKey]:
        return list(self._open)

    def handles(self) -> list[ConversationHandle]:
        return list(self._open.values())

    def get(self, key: ConversationKey) -> ConversationHandle:
        handle = self._open.get(key)
        if handle is None:
            raise NotFoundError(f"Conversation {key} is not open")
        return handle

    def open(self, descriptor: ConversationDescriptor) -> ConversationHandle:
        key = descriptor.key
        existing = self._open.get(key)
        if existing is not None:
            return existing
        assert_capacity(len(self._open), descriptor)

        store = self._store_factory(descriptor)
        handle = ConversationHandle(descriptor=descriptor, store=store)
        event_filter = self._build_filter(key, store)
        for name in ROUTED_EVENTS:
            self._router.subscribe(name, event_filter)
        self._open[key] = handle
        self._filters[key] = event_filter
        logger.info("Opened conversation %s (%s)", key, descriptor.name)
        return handle

    def close(self, key: ConversationKey) -> bool:
        handle = self._open.pop(key, None)
        if handle is None:
            return False
        event_filter = self._filters.pop(key)
        for name in ROUTED_EVENTS:
            self._router.unsubscribe(name, event_filter)
        handle.store.detach()
        logger.info("Closed conversation %s", key)
        return True

    def close_all(self) -> None:
        for key in list(self._open):
            self.close(key)

    @staticmethod
    def _build_filter(key: ConversationKey, store: MessageStore) -> Callable[[Any], None]:
        def event_filter(event: Any) -> None:
            target = event.conversation
            if target is None:
                if getattr(event, "kind", None) != key.kind:
                    return
            elif target != key:
                return
            store.handle(event)
        return event_filter
