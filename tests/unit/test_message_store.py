from __future__ import annotations

import asyncio

import pytest

from chat_client.application.dto.outgoing import OutgoingFile
from chat_client.application.dto.updates import StoreUpdate, UpdateReason
from chat_client.application.exceptions import (
    CommandRejectedError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from chat_client.domain.events import MessagePushed, MessageRead, TypingChanged
from chat_client.domain.value_objects.enums import (
    ConversationKind,
    DeliveryStatus,
    EventName,
    MessageType,
)
from chat_client.services.message_store import MessageStore
from tests.conftest import (
    DIRECT_KEY,
    GROUP_KEY,
    LOCAL_USER,
    PEER,
    T0,
    make_descriptor,
    make_message,
    settle,
)


def _ids(store: MessageStore) -> list[int | None]:
    return [m.id for m in store.messages]


# -- merge -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_messages_are_ordered_by_timestamp_not_arrival(store):
    store.merge(make_message(message_id=1, body="A", at=3))
    store.merge(make_message(message_id=2, body="B", at=1))
    store.merge(make_message(message_id=3, body="C", at=2))

    assert [m.body for m in store.messages] == ["B", "C", "A"]


@pytest.mark.asyncio
async def test_equal_timestamps_tie_break_on_id(store):
    store.merge(make_message(message_id=9, at=1))
    store.merge(make_message(message_id=4, at=1))

    assert _ids(store) == [4, 9]


@pytest.mark.asyncio
async def test_duplicate_push_collapses_and_keeps_later_read_state(store):
    store.merge(make_message(message_id=5))
    changed = store.merge(make_message(message_id=5, read_at=T0))

    assert _ids(store) == [5]
    assert changed is True
    assert store.messages[0].read_at == T0


@pytest.mark.asyncio
async def test_stale_copy_never_clears_read_or_delete_flags(store):
    store.merge(make_message(message_id=5, read_at=T0, is_deleted=True))
    changed = store.merge(make_message(message_id=5, body="edited?", read_at=None))

    message = store.messages[0]
    assert changed is False
    assert message.read_at == T0
    assert message.is_deleted is True
    assert message.body == "hello"


@pytest.mark.asyncio
async def test_message_for_other_conversation_is_discarded(store):
    assert store.merge(make_message(message_id=1, conversation=GROUP_KEY)) is False
    assert store.messages == []


@pytest.mark.asyncio
async def test_unread_count_is_derived_from_peer_messages(store):
    store.merge(make_message(message_id=1, sender_id=PEER))
    store.merge(make_message(message_id=2, sender_id=PEER, read_at=T0))
    store.merge(make_message(message_id=3, sender_id=LOCAL_USER))

    assert store.unread_count == 1


# -- optimistic sends ----------------------------------------------------------

@pytest.mark.asyncio
async def test_send_inserts_pending_temp_entry(store, api):
    api.send_gate = asyncio.Event()

    message = store.send("  hi  ")

    assert message.client_msg_id == "tmp-1"
    assert message.id is None
    assert message.body == "hi"
    assert message.status == DeliveryStatus.PENDING
    assert [m.client_msg_id for m in store.messages] == ["tmp-1"]
    store.detach()


@pytest.mark.asyncio
async def test_ack_reconciles_temp_entry(store, api):
    api.send_gate = asyncio.Event()
    store.send("hi")
    await settle()

    store.merge(make_message(message_id=42, sender_id=LOCAL_USER, body="hi"))

    assert _ids(store) == [42]
    assert store.messages[0].client_msg_id == "tmp-1"
    assert store.messages[0].status == DeliveryStatus.SENT

    api.next_id = 41
    api.send_gate.set()
    await settle()

    assert _ids(store) == [42]


@pytest.mark.asyncio
async def test_send_result_reconciles_without_push(store, api):
    store.send("hi")
    await settle()

    assert _ids(store) == [101]
    assert api.sent == [(DIRECT_KEY, "hi", "tmp-1")]


@pytest.mark.asyncio
async def test_ack_with_client_msg_id_matches_exact_entry(store, api):
    api.send_gate = asyncio.Event()
    store.send("same")
    store.send("same")

    store.merge(make_message(message_id=50, sender_id=LOCAL_USER, body="same", client_msg_id="tmp-2"))

    remaining = [m for m in store.messages if m.is_optimistic]
    assert [m.client_msg_id for m in remaining] == ["tmp-1"]
    assert store.get(50).client_msg_id == "tmp-2"
    store.detach()


@pytest.mark.asyncio
async def test_peer_message_with_same_body_does_not_reconcile(store, api):
    api.send_gate = asyncio.Event()
    store.send("hi")

    store.merge(make_message(message_id=7, sender_id=PEER, body="hi"))

    assert len(store.messages) == 2
    assert store.get("tmp-1") is not None
    store.detach()


@pytest.mark.asyncio
async def test_send_with_files_only(store, api):
    message = store.send("", [OutgoingFile(name="report.pdf", content=b"%PDF")])

    assert message.type == MessageType.FILE
    assert message.attachment_names() == ("report.pdf",)
    assert message.attachments[0].size == 4
    await settle()


@pytest.mark.asyncio
async def test_empty_send_is_rejected(store):
    with pytest.raises(ValidationError):
        store.send("   ")
    assert store.messages == []


@pytest.mark.asyncio
async def test_rejected_send_is_marked_failed_and_retry_reuses_key(store, api):
    api.send_error = CommandRejectedError("too long", status_code=422)
    store.send("hi")
    await settle()

    assert store.messages[0].status == DeliveryStatus.FAILED

    api.send_error = None
    retried = store.retry("tmp-1")
    assert retried.status == DeliveryStatus.PENDING
    await settle()

    assert [s[2] for s in api.sent] == ["tmp-1", "tmp-1"]
    assert _ids(store) == [101]
    assert store.messages[0].status == DeliveryStatus.SENT


@pytest.mark.asyncio
async def test_retry_requires_failed_message(store, api):
    api.send_gate = asyncio.Event()
    store.send("hi")

    with pytest.raises(ValidationError):
        store.retry("tmp-1")
    with pytest.raises(NotFoundError):
        store.retry("tmp-99")
    store.detach()


@pytest.mark.asyncio
async def test_ack_timeout_marks_failed_and_late_ack_still_reconciles(api, clock):
    store = MessageStore(
        make_descriptor(), local_user_id=LOCAL_USER, history=api, commands=api,
        clock=clock, ack_timeout=0.01,
    )
    api.send_gate = asyncio.Event()
    store.send("hi")

    await asyncio.sleep(0.05)
    assert store.messages[0].status == DeliveryStatus.FAILED

    store.merge(make_message(message_id=55, sender_id=LOCAL_USER, body="hi", client_msg_id="tmp-1"))

    assert _ids(store) == [55]
    assert store.messages[0].status == DeliveryStatus.SENT
    store.detach()


# -- read state ----------------------------------------------------------------

@pytest.mark.asyncio
async def test_mark_read_applies_locally_then_sends_receipt(store, api):
    store.merge(make_message(message_id=5))

    assert await store.mark_read(5) is True
    assert api.reads == [(DIRECT_KEY, 5)]
    assert store.get(5).read_at == T0
    assert store.unread_count == 0


@pytest.mark.asyncio
async def test_rejected_receipt_rolls_back_to_unread(store, api):
    store.merge(make_message(message_id=5))
    api.read_gate = asyncio.Event()

    pending = asyncio.create_task(store.mark_read(5))
    await settle()
    assert store.unread_count == 0

    api.read_error = CommandRejectedError("forbidden", status_code=403)
    api.read_gate.set()

    assert await pending is False
    assert store.get(5).read_at is None
    assert store.unread_count == 1


@pytest.mark.asyncio
async def test_authoritative_read_during_receipt_is_not_rolled_back(store, api):
    store.merge(make_message(message_id=5))
    api.read_gate = asyncio.Event()
    server_time = T0.replace(minute=5)

    pending = asyncio.create_task(store.mark_read(5))
    await settle()
    store.handle(MessageRead(
        name=EventName.MESSAGE_READ, kind=ConversationKind.DIRECT,
        message_id=5, read_at=server_time, conversation=DIRECT_KEY,
    ))
    api.read_error = TransportError("connection reset")
    api.read_gate.set()
    await pending

    assert store.get(5).read_at == server_time
    assert store.unread_count == 0


@pytest.mark.asyncio
async def test_mark_read_ignores_own_and_already_read(store, api):
    store.merge(make_message(message_id=1, sender_id=LOCAL_USER))
    store.merge(make_message(message_id=2, read_at=T0))

    assert await store.mark_read(1) is False
    assert await store.mark_read(2) is False
    assert api.reads == []

    with pytest.raises(NotFoundError):
        await store.mark_read(99)


@pytest.mark.asyncio
async def test_mark_all_read(store, api):
    store.merge(make_message(message_id=1))
    store.merge(make_message(message_id=2, at=1))
    store.merge(make_message(message_id=3, sender_id=LOCAL_USER, at=2))

    assert await store.mark_all_read() == 2
    assert sorted(r[1] for r in api.reads) == [1, 2]
    assert store.unread_count == 0


# -- delete ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_own_message(store, api):
    store.merge(make_message(message_id=3, sender_id=LOCAL_USER))

    assert await store.delete(3) is True
    assert store.get(3).is_deleted is True
    assert api.deletes == [(DIRECT_KEY, 3)]


@pytest.mark.asyncio
async def test_rejected_delete_is_rolled_back(store, api):
    store.merge(make_message(message_id=3, sender_id=LOCAL_USER))
    api.delete_error = CommandRejectedError("gone", status_code=404)

    assert await store.delete(3) is False
    assert store.get(3).is_deleted is False


@pytest.mark.asyncio
async def test_cannot_delete_peer_message(store):
    store.merge(make_message(message_id=3, sender_id=PEER))

    with pytest.raises(ValidationError):
        await store.delete(3)


# -- history ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_load_older_pages_until_exhausted(store, api):
    api.pages[DIRECT_KEY] = [
        [make_message(message_id=3, at=3), make_message(message_id=4, at=4)],
        [make_message(message_id=1, at=1), make_message(message_id=2, at=2)],
        [make_message(message_id=0, at=0)],
    ]

    assert len(await store.load_older()) == 2
    assert len(await store.load_older()) == 2
    assert len(await store.load_older()) == 1
    assert store.cursor.exhausted is True
    assert await store.load_older() == []

    assert _ids(store) == [0, 1, 2, 3, 4]
    assert [c[1] for c in api.fetch_calls] == [1, 2, 3]


@pytest.mark.asyncio
async def test_history_does_not_overwrite_newer_state(store, api):
    store.merge(make_message(message_id=4, at=4, read_at=T0))
    api.pages[DIRECT_KEY] = [[make_message(message_id=3, at=3), make_message(message_id=4, at=4)]]

    await store.load_older()

    assert _ids(store) == [3, 4]
    assert store.get(4).read_at == T0


@pytest.mark.asyncio
async def test_failed_fetch_keeps_cursor_for_retry(store, api):
    api.pages[DIRECT_KEY] = [[make_message(message_id=1), make_message(message_id=2, at=1)]]
    api.fetch_errors = [TransportError("timeout")]

    with pytest.raises(TransportError):
        await store.load_older()
    assert store.cursor.page == 1

    await store.load_older()
    assert store.cursor.page == 2
    assert [c[1] for c in api.fetch_calls] == [1, 1]
    assert _ids(store) == [1, 2]


@pytest.mark.asyncio
async def test_concurrent_load_older_shares_one_fetch(store, api):
    api.pages[DIRECT_KEY] = [[make_message(message_id=1), make_message(message_id=2, at=1)]]
    api.fetch_gate = asyncio.Event()

    first = asyncio.create_task(store.load_older())
    second = asyncio.create_task(store.load_older())
    await settle()
    api.fetch_gate.set()

    assert len(await first) == 2
    assert len(await second) == 2
    assert len(api.fetch_calls) == 1


@pytest.mark.asyncio
async def test_fetch_completing_after_close_is_ignored(store, api):
    api.pages[DIRECT_KEY] = [[make_message(message_id=1)]]
    api.fetch_gate = asyncio.Event()

    pending = asyncio.create_task(store.load_older())
    await settle()
    store.detach()
    api.fetch_gate.set()

    assert await pending == []
    assert store.messages == []


# -- typing, subscribers, lifecycle ------------------------------------------------

@pytest.mark.asyncio
async def test_typing_indicator_expires(api, clock):
    store = MessageStore(
        make_descriptor(), local_user_id=LOCAL_USER, history=api, commands=api,
        clock=clock, typing_ttl=0.01,
    )
    store.handle(TypingChanged(name=EventName.TYPING_START, conversation=DIRECT_KEY, user_id=PEER))
    assert store.is_typing is True

    await asyncio.sleep(0.05)
    assert store.is_typing is False


@pytest.mark.asyncio
async def test_typing_stop_clears_indicator(store):
    store.handle(TypingChanged(name=EventName.TYPING_START, conversation=DIRECT_KEY, user_id=PEER))
    store.handle(TypingChanged(name=EventName.TYPING_STOP, conversation=DIRECT_KEY, user_id=PEER))

    assert store.is_typing is False


@pytest.mark.asyncio
async def test_subscribers_are_notified_and_isolated(store):
    updates: list[StoreUpdate] = []

    def broken(update):
        raise RuntimeError("render failed")

    store.subscribe(broken)
    store.subscribe(updates.append)
    store.handle(MessagePushed(name=EventName.MESSAGE_RECEIVED, message=make_message(message_id=1)))

    assert [u.reason for u in updates] == [UpdateReason.MESSAGES]
    assert updates[0].conversation == DIRECT_KEY


@pytest.mark.asyncio
async def test_suspended_send_is_resubmitted_on_resume(store, api):
    api.send_gate = asyncio.Event()
    store.send("hi")
    await settle()

    store.suspend_outbound()
    await settle()
    assert store.messages[0].status == DeliveryStatus.PENDING

    api.send_gate.set()
    store.resume_outbound()
    await settle()

    assert [s[2] for s in api.sent] == ["tmp-1", "tmp-1"]
    assert store.messages[0].status == DeliveryStatus.SENT
    assert store.messages[0].client_msg_id == "tmp-1"


@pytest.mark.asyncio
async def test_commands_issued_while_suspended_wait_for_resume(store, api):
    store.merge(make_message(message_id=5))
    store.suspend_outbound()

    store.send("queued")
    assert await store.mark_read(5) is True
    await settle()
    assert api.sent == []
    assert api.reads == []

    store.resume_outbound()
    await settle()

    assert [s[1] for s in api.sent] == ["queued"]
    assert api.reads == [(DIRECT_KEY, 5)]


@pytest.mark.asyncio
async def test_abandon_fails_queued_sends_and_rolls_back_reads_and_deletes(store, api):
    store.merge(make_message(message_id=5))
    store.merge(make_message(message_id=6, sender_id=LOCAL_USER, at=1))
    store.suspend_outbound()

    queued = store.send("queued")
    assert await store.mark_read(5) is True
    assert await store.delete(6) is True

    store.abandon_outbound()
    await settle()

    assert api.sent == [] and api.reads == [] and api.deletes == []
    assert store.get(queued.client_msg_id).status == DeliveryStatus.FAILED
    assert store.get(5).read_at is None
    assert store.get(6).is_deleted is False

    store.retry(queued.client_msg_id)
    await settle()
    assert [s[1] for s in api.sent] == ["queued"]
    assert all(m.status == DeliveryStatus.SENT for m in store.messages)


@pytest.mark.asyncio
async def test_queued_send_fails_at_its_deadline(api, clock):
    store = MessageStore(
        make_descriptor(), local_user_id=LOCAL_USER, history=api, commands=api,
        clock=clock, ack_timeout=0.01,
    )
    store.suspend_outbound()
    store.send("hi")

    await asyncio.sleep(0.05)
    assert [m.status for m in store.messages] == [DeliveryStatus.FAILED]

    store.resume_outbound()
    await settle()
    assert api.sent == []


@pytest.mark.asyncio
async def test_detach_drops_queued_commands(store, api):
    store.suspend_outbound()
    store.send("hi", [OutgoingFile("notes.txt", b"abc", "text/plain")])

    store.detach()
    store.resume_outbound()
    await settle()

    assert api.sent == []
    assert store._pending_files == {}


@pytest.mark.asyncio
async def test_detach_notifies_and_ignores_later_events(store):
    updates: list[StoreUpdate] = []
    store.subscribe(updates.append)

    store.detach()
    store.merge(make_message(message_id=1))

    assert [u.reason for u in updates] == [UpdateReason.CLOSED]
    assert store.closed is True
    assert store.messages == []
    with pytest.raises(NotFoundError):
        store.send("hi")
