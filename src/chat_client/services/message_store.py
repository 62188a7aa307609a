"""Ordered message history and read state for one open conversation."""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Coroutine

from chat_client.application.dto.history import HistoryCursor
from chat_client.application.dto.outgoing import OutgoingFile
from chat_client.application.dto.updates import StoreUpdate, UpdateReason
from chat_client.application.exceptions import AppError, NotFoundError, ValidationError
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.application.ports.commands import MessageCommands
from chat_client.application.ports.history import HistoryFetcher
from chat_client.config import settings
from chat_client.domain.entities.conversation import ConversationDescriptor, ConversationKey
from chat_client.domain.entities.message import Attachment, Message
from chat_client.domain.events import (
    ChatEvent,
    MessageDeleted,
    MessagePushed,
    MessageRead,
    TypingChanged,
)
from chat_client.domain.value_objects.enums import DeliveryStatus, MessageType

logger = logging.getLogger(__name__)

UpdateListener = Callable[[StoreUpdate], None]

_SEND = "send"
_READ = "read"
_DELETE = "delete"


class MessageStore:
    """Merges history pages, push events and optimistic sends for one conversation.

    Messages are keyed by server id (or temporary ``client_msg_id`` until the
    server assigns one) and kept ordered by ``Message.sort_key``. Merging a
    known id only ever sets ``read_at`` and ``is_deleted``; nothing else is
    overwritten, so redelivered or stale copies are harmless.
    """

    def __init__(
        self,
        descriptor: ConversationDescriptor,
        *,
        local_user_id: int,
        history: HistoryFetcher,
        commands: MessageCommands,
        clock: Clock | None = None,
        page_size: int | None = None,
        ack_timeout: float | None = None,
        typing_ttl: float | None = None,
    ) -> None:
        self._descriptor = descriptor
        self._local_user_id = local_user_id
        self._history = history
        self._commands = commands
        self._clock = clock or SystemClock()
        self._page_size = page_size or settings.HISTORY_PAGE_SIZE
        self._ack_timeout = ack_timeout if ack_timeout is not None else settings.SEND_ACK_TIMEOUT_SECONDS
        self._typing_ttl = typing_ttl if typing_ttl is not None else settings.TYPING_INDICATOR_SECONDS

        self._entries: dict[str, Message] = {}
        self._ordered: list[Message] | None = None
        self._cursor = HistoryCursor()
        self._fetch_task: asyncio.Task[list[Message]] | None = None

        self._temp_ids = itertools.count(1)
        self._pending_files: dict[str, tuple[OutgoingFile, ...]] = {}
        self._ack_timers: dict[str, asyncio.TimerHandle] = {}
        self._pending_reads: dict[int, datetime] = {}
        self._pending_deletes: set[int] = set()
        self._outbound: dict[asyncio.Task[Any], tuple[str, Any]] = {}
        self._requeued: list[tuple[str, Any]] = []
        self._suspended = False

        self._typing = False
        self._typing_timer: asyncio.TimerHandle | None = None

        self._listeners: list[UpdateListener] = []
        self._closed = False

    # -- read-only view ------------------------------------------------------

    @property
    def descriptor(self) -> ConversationDescriptor:
        return self._descriptor

    @property
    def key(self) -> ConversationKey:
        return self._descriptor.key

    @property
    def messages(self) -> list[Message]:
        if self._ordered is None:
            self._ordered = sorted(self._entries.values(), key=Message.sort_key)
        return list(self._ordered)

    @property
    def cursor(self) -> HistoryCursor:
        return self._cursor

    @property
    def unread_count(self) -> int:
        return sum(
            1 for m in self._entries.values()
            if m.is_unread and m.sender_id != self._local_user_id
        )

    @property
    def is_typing(self) -> bool:
        return self._typing

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, key: str | int) -> Message | None:
        return self._entries.get(str(key))

    # -- listeners -----------------------------------------------------------

    def subscribe(self, listener: UpdateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: UpdateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, reason: UpdateReason) -> None:
        update = StoreUpdate(self.key, reason)
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                logger.exception("Store listener failed for %s", self.key)

    # -- inbound -------------------------------------------------------------

    def handle(self, event: ChatEvent) -> None:
        """Apply a routed realtime event."""
        if isinstance(event, MessagePushed):
            self.merge(event.message)
        elif isinstance(event, MessageRead):
            self.apply_read(event.message_id, event.read_at)
        elif isinstance(event, MessageDeleted):
            self.apply_deleted(event.message_id)
        elif isinstance(event, TypingChanged):
            self.set_typing(event.active)

    def merge(self, message: Message) -> bool:
        """Insert or update ``message``. Returns True if the view changed."""
        if self._closed:
            return False
        if message.conversation != self.key:
            logger.warning(
                "Discarding message %s for %s in store %s",
                message.id or message.client_msg_id, message.conversation, self.key,
            )
            return False
        changed = self._apply(message)
        if changed:
            self._notify(UpdateReason.MESSAGES)
        return changed

    def apply_read(self, message_id: int, read_at: datetime) -> bool:
        """Authoritative read receipt; supersedes any optimistic read in flight."""
        entry = self._entries.get(str(message_id))
        if self._closed or entry is None:
            return False
        self._pending_reads.pop(message_id, None)
        if entry.read_at == read_at:
            return False
        self._put(replace(entry, read_at=read_at))
        self._notify(UpdateReason.READ_STATE)
        return True

    def apply_deleted(self, message_id: int) -> bool:
        entry = self._entries.get(str(message_id))
        if self._closed or entry is None:
            return False
        self._pending_deletes.discard(message_id)
        if entry.is_deleted:
            return False
        self._put(replace(entry, is_deleted=True))
        self._notify(UpdateReason.MESSAGES)
        return True

    def set_typing(self, active: bool) -> None:
        if self._closed:
            return
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None
        if active:
            loop = asyncio.get_running_loop()
            self._typing_timer = loop.call_later(self._typing_ttl, self.set_typing, False)
        if self._typing != active:
            self._typing = active
            self._notify(UpdateReason.TYPING)

    # -- history -------------------------------------------------------------

    async def load_older(self) -> list[Message]:
        """Fetch the next page of older history and merge it.

        Concurrent calls share one request. The cursor only advances after a
        successful fetch, so retrying after an error refetches the same page.
        """
        self._ensure_open()
        if self._cursor.exhausted:
            return []
        if self._fetch_task is None or self._fetch_task.done():
            self._fetch_task = asyncio.create_task(
                self._fetch(self._cursor), name=f"history-{self.key}",
            )
        task = self._fetch_task
        await asyncio.wait({task})
        if task.cancelled():
            return []
        return task.result()

    async def _fetch(self, cursor: HistoryCursor) -> list[Message]:
        page = await self._history.fetch_page(self.key, cursor, self._page_size)
        if self._closed or self._cursor != cursor:
            return []
        changed = False
        for message in page:
            if message.conversation != self.key:
                logger.warning("Discarding history message for %s in %s", message.conversation, self.key)
                continue
            changed = self._apply(message) or changed
        self._cursor = cursor.advance(len(page), self._page_size)
        logger.debug("Loaded page %d for %s (%d messages)", cursor.page, self.key, len(page))
        if changed:
            self._notify(UpdateReason.MESSAGES)
        return page

    # -- sending -------------------------------------------------------------

    def send(self, text: str, files: Sequence[OutgoingFile] = ()) -> Message:
        """Show the message immediately and submit it in the background."""
        self._ensure_open()
        body = text.strip()
        if not body and not files:
            raise ValidationError("Message must have text or attachments")

        client_msg_id = f"tmp-{next(self._temp_ids)}"
        while client_msg_id in self._entries:
            client_msg_id = f"tmp-{next(self._temp_ids)}"

        message = Message(
            id=None,
            conversation=self.key,
            sender_id=self._local_user_id,
            body=body,
            created_at=self._clock.now(),
            attachments=tuple(
                Attachment(url="", name=f.name, size=f.size, mime_type=f.mime_type) for f in files
            ),
            type=MessageType.FILE if files else MessageType.TEXT,
            client_msg_id=client_msg_id,
            status=DeliveryStatus.PENDING,
        )
        self._pending_files[client_msg_id] = tuple(files)
        self._put(message)
        self._notify(UpdateReason.MESSAGES)
        self._dispatch(_SEND, client_msg_id)
        return message

    def retry(self, client_msg_id: str) -> Message:
        """Resubmit a failed send under the same temporary key."""
        self._ensure_open()
        entry = self._entries.get(client_msg_id)
        if entry is None or not entry.is_optimistic:
            raise NotFoundError(f"No unsent message {client_msg_id} in {self.key}")
        if entry.status != DeliveryStatus.FAILED:
            raise ValidationError(f"Message {client_msg_id} has not failed")

        self._cancel_outbound(_SEND, client_msg_id)
        entry = replace(entry, status=DeliveryStatus.PENDING)
        self._put(entry)
        self._notify(UpdateReason.DELIVERY)
        self._dispatch(_SEND, client_msg_id)
        return entry

    async def _deliver(self, client_msg_id: str) -> None:
        pending = self._entries.get(client_msg_id)
        if pending is None or not pending.is_optimistic:
            return
        try:
            confirmed = await self._commands.send(
                self.key, pending.body, self._pending_files.get(client_msg_id, ()), client_msg_id,
            )
        except AppError as exc:
            logger.warning("Send %s in %s failed: %s", client_msg_id, self.key, exc.detail)
            self._mark_failed(client_msg_id)
            return
        except Exception:
            logger.exception("Send %s in %s failed", client_msg_id, self.key)
            self._mark_failed(client_msg_id)
            return
        if confirmed.client_msg_id is None:
            confirmed = replace(confirmed, client_msg_id=client_msg_id)
        self.merge(confirmed)

    def _on_ack_timeout(self, client_msg_id: str) -> None:
        self._ack_timers.pop(client_msg_id, None)
        entry = self._entries.get(client_msg_id)
        if entry is not None and entry.status == DeliveryStatus.PENDING:
            logger.warning("No ack for %s in %s within %.1fs", client_msg_id, self.key, self._ack_timeout)
            self._mark_failed(client_msg_id)

    def _mark_failed(self, client_msg_id: str) -> None:
        self._cancel_ack_timer(client_msg_id)
        if (_SEND, client_msg_id) in self._requeued:
            self._requeued.remove((_SEND, client_msg_id))
        entry = self._entries.get(client_msg_id)
        if self._closed or entry is None or entry.status == DeliveryStatus.FAILED:
            return
        self._put(replace(entry, status=DeliveryStatus.FAILED))
        self._notify(UpdateReason.DELIVERY)

    # -- read receipts -------------------------------------------------------

    async def mark_read(self, message_id: int) -> bool:
        """Mark a received message read: local first, then the receipt command.

        Returns True while the local read state stands. A rejected receipt
        rolls the message back to unread and returns False.
        """
        self._ensure_open()
        entry = self._entries.get(str(message_id))
        if entry is None:
            raise NotFoundError(f"Message {message_id} not found in {self.key}")
        if entry.sender_id == self._local_user_id or entry.read_at is not None:
            return False

        read_at = self._clock.now()
        self._pending_reads[message_id] = read_at
        self._put(replace(entry, read_at=read_at))
        self._notify(UpdateReason.READ_STATE)

        task = self._dispatch(_READ, message_id)
        if task is None:
            return True
        await asyncio.wait({task})
        return task.cancelled() or task.result()

    async def mark_all_read(self) -> int:
        unread = [
            m.id for m in self._entries.values()
            if m.id is not None and m.is_unread and m.sender_id != self._local_user_id
        ]
        results = await asyncio.gather(*(self.mark_read(message_id) for message_id in unread))
        return sum(1 for ok in results if ok)

    async def _send_receipt(self, message_id: int) -> bool:
        try:
            await self._commands.mark_read(self.key, message_id)
        except AppError as exc:
            logger.warning("Read receipt for %s in %s rejected: %s", message_id, self.key, exc.detail)
            self._rollback_read(message_id)
            return False
        except Exception:
            logger.exception("Read receipt for %s in %s failed", message_id, self.key)
            self._rollback_read(message_id)
            return False
        self._pending_reads.pop(message_id, None)
        return True

    def _rollback_read(self, message_id: int) -> None:
        optimistic = self._pending_reads.pop(message_id, None)
        entry = self._entries.get(str(message_id))
        if self._closed or optimistic is None or entry is None or entry.read_at != optimistic:
            return
        self._put(replace(entry, read_at=None))
        self._notify(UpdateReason.READ_STATE)

    # -- deletes -------------------------------------------------------------

    async def delete(self, message_id: int) -> bool:
        """Soft-delete one of our own messages, rolled back if the server refuses."""
        self._ensure_open()
        entry = self._entries.get(str(message_id))
        if entry is None:
            raise NotFoundError(f"Message {message_id} not found in {self.key}")
        if entry.sender_id != self._local_user_id:
            raise ValidationError("Only your own messages can be deleted")
        if entry.is_deleted:
            return False

        self._pending_deletes.add(message_id)
        self._put(replace(entry, is_deleted=True))
        self._notify(UpdateReason.MESSAGES)

        task = self._dispatch(_DELETE, message_id)
        if task is None:
            return True
        await asyncio.wait({task})
        return task.cancelled() or task.result()

    async def _send_delete(self, message_id: int) -> bool:
        try:
            await self._commands.delete(self.key, message_id)
        except AppError as exc:
            logger.warning("Delete of %s in %s rejected: %s", message_id, self.key, exc.detail)
            self._rollback_delete(message_id)
            return False
        except Exception:
            logger.exception("Delete of %s in %s failed", message_id, self.key)
            self._rollback_delete(message_id)
            return False
        self._pending_deletes.discard(message_id)
        return True

    def _rollback_delete(self, message_id: int) -> None:
        entry = self._entries.get(str(message_id))
        if self._closed or message_id not in self._pending_deletes or entry is None:
            return
        self._pending_deletes.discard(message_id)
        self._put(replace(entry, is_deleted=False))
        self._notify(UpdateReason.MESSAGES)

    # -- outbound lifecycle --------------------------------------------------

    def suspend_outbound(self) -> None:
        """Transport dropped: cancel in-flight commands and queue them for reconnect.

        Ack timers keep running, so a send that is still queued when its
        deadline passes is marked failed and dropped from the queue.
        """
        if self._suspended:
            return
        self._suspended = True
        for task, command in list(self._outbound.items()):
            task.cancel()
            self._requeued.append(command)
        if self._requeued:
            logger.info("Queued %d outbound commands for %s until reconnect", len(self._requeued), self.key)

    def resume_outbound(self) -> None:
        if not self._suspended:
            return
        self._suspended = False
        queued, self._requeued = self._requeued, []
        for kind, ref in queued:
            self._dispatch(kind, ref)

    def abandon_outbound(self) -> None:
        """The connection gave up: fail queued sends and roll back queued reads and deletes."""
        self._suspended = False
        queued, self._requeued = self._requeued, []
        if queued:
            logger.warning("Abandoning %d queued outbound commands for %s", len(queued), self.key)
        for kind, ref in queued:
            if kind == _SEND:
                self._mark_failed(ref)
            elif kind == _READ:
                self._rollback_read(ref)
            else:
                self._rollback_delete(ref)

    def _dispatch(self, kind: str, ref: Any) -> asyncio.Task[Any] | None:
        if kind == _SEND:
            self._arm_ack_timer(ref)
        if self._suspended:
            self._requeued.append((kind, ref))
            return None
        factories: dict[str, Callable[[Any], Coroutine[Any, Any, Any]]] = {
            _SEND: self._deliver,
            _READ: self._send_receipt,
            _DELETE: self._send_delete,
        }
        task = asyncio.create_task(factories[kind](ref), name=f"{kind}-{self.key}-{ref}")
        self._outbound[task] = (kind, ref)
        task.add_done_callback(self._outbound_done)
        return task

    def _outbound_done(self, task: asyncio.Task[Any]) -> None:
        self._outbound.pop(task, None)

    def _cancel_outbound(self, kind: str, ref: Any) -> None:
        for task, command in list(self._outbound.items()):
            if command == (kind, ref):
                task.cancel()

    def _arm_ack_timer(self, client_msg_id: str) -> None:
        self._cancel_ack_timer(client_msg_id)
        loop = asyncio.get_running_loop()
        self._ack_timers[client_msg_id] = loop.call_later(
            self._ack_timeout, self._on_ack_timeout, client_msg_id,
        )

    def _cancel_ack_timer(self, client_msg_id: str) -> None:
        timer = self._ack_timers.pop(client_msg_id, None)
        if timer is not None:
            timer.cancel()

    def detach(self) -> None:
        """Close the store: cancel fetches, timers and commands; late results are ignored."""
        if self._closed:
            return
        self._closed = True
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        for task in list(self._outbound):
            task.cancel()
        self._requeued.clear()
        self._pending_files.clear()
        self._pending_reads.clear()
        self._pending_deletes.clear()
        for timer in self._ack_timers.values():
            timer.cancel()
        self._ack_timers.clear()
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None
        self._notify(UpdateReason.CLOSED)
        self._listeners.clear()

    # -- internals -----------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise NotFoundError(f"Conversation {self.key} is not open")

    def _put(self, message: Message) -> None:
        self._entries[message.key] = message
        self._ordered = None

    def _apply(self, message: Message) -> bool:
        if message.id is None:
            if message.client_msg_id is None:
                logger.warning("Discarding message without id in %s", self.key)
                return False
            if message.key in self._entries:
                return False
            self._put(message)
            return True

        twin = self._match_pending(message)
        if twin is not None:
            del self._entries[twin.key]
            self._ordered = None
            self._cancel_ack_timer(twin.key)
            self._pending_files.pop(twin.key, None)
            message = replace(message, client_msg_id=twin.client_msg_id)

        existing = self._entries.get(str(message.id))
        if existing is None:
            self._put(replace(message, status=DeliveryStatus.SENT))
            return True

        merged = replace(
            existing,
            read_at=existing.read_at or message.read_at,
            is_deleted=existing.is_deleted or message.is_deleted,
        )
        if merged != existing:
            self._put(merged)
            return True
        return twin is not None

    def _match_pending(self, message: Message) -> Message | None:
        """Find the optimistic entry a confirmed message stands for, if any."""
        if message.client_msg_id is not None:
            candidate = self._entries.get(message.client_msg_id)
            if candidate is not None and candidate.is_optimistic:
                return candidate
            return None
        if message.sender_id != self._local_user_id:
            return None
        for candidate in self.messages:
            if (
                candidate.is_optimistic
                and candidate.body == message.body
                and candidate.attachment_names() == message.attachment_names()
            ):
                return candidate
        return None
