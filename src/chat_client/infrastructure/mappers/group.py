from __future__ import annotations

from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.entities.group import Group, GroupMember
from chat_client.domain.entities.summary import RecentChat, UnreadTotals
from chat_client.domain.value_objects.enums import ConversationKind
from chat_client.infrastructure.transport.protocol import (
    WireGroup,
    WireGroupMember,
    WireRecentChat,
    WireUnreadCount,
)


def wire_to_group(wire: WireGroup) -> Group:
    return Group(
        id=wire.group_id,
        name=wire.name,
        created_by=wire.created_by,
        created_by_name=wire.created_by_name,
        created_at=wire.created_on,
        member_count=wire.member_count,
    )


def wire_to_member(wire: WireGroupMember) -> GroupMember:
    return GroupMember(
        user_id=wire.user_id,
        name=wire.user_name or "Unknown User",
        email=wire.user_email,
        image=wire.user_image,
        added_at=wire.added_on,
        is_active=wire.is_active,
    )


def wire_to_recent_chat(wire: WireRecentChat) -> RecentChat:
    if wire.chat_type == ConversationKind.GROUP:
        conversation = ConversationKey(ConversationKind.GROUP, wire.group_id)
    else:
        conversation = ConversationKey(ConversationKind.DIRECT, wire.other_user_id)
    # Older servers only send the has_unread flag.
    unread = wire.unread_count if wire.unread_count is not None else int(bool(wire.has_unread))
    return RecentChat(
        conversation=conversation,
        name=wire.chat_name,
        image=wire.chat_image,
        last_message=wire.last_message or "",
        last_message_type=wire.last_message_type,
        last_message_at=wire.last_message_time,
        unread_count=unread,
    )


def wire_to_unread_totals(wire: WireUnreadCount) -> UnreadTotals:
    return UnreadTotals(direct=wire.direct_unread, group=wire.group_unread, total=wire.total_unread)
