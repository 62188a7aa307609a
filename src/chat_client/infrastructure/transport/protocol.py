"""Socket.IO chat event names and payload models."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from chat_client.domain.value_objects.enums import ConversationKind, EventName

# Server → client. Several wire names collapse onto one event.
INBOUND_EVENTS: dict[str, EventName] = {
    "new_direct_message": EventName.MESSAGE_RECEIVED,
    "message_sent": EventName.MESSAGE_SENT_ACK,
    "message_read": EventName.MESSAGE_READ,
    "message_deleted": EventName.MESSAGE_DELETED,
    "group_created": EventName.GROUP_CREATED,
    "added_to_group": EventName.GROUP_MEMBER_ADDED,
    "members_added": EventName.GROUP_MEMBER_ADDED,
    "removed_from_group": EventName.GROUP_MEMBER_REMOVED,
    "member_removed": EventName.GROUP_MEMBER_REMOVED,
    "member_left_group": EventName.GROUP_MEMBER_LEFT,
    "left_group": EventName.GROUP_MEMBER_LEFT,
    "group_deleted": EventName.GROUP_DELETED,
    "new_group_message": EventName.GROUP_MESSAGE_RECEIVED,
    "group_message_read": EventName.GROUP_MESSAGE_READ,
    "group_message_deleted": EventName.GROUP_MESSAGE_DELETED,
    "typing": EventName.TYPING_START,
    "stop_typing": EventName.TYPING_STOP,
    "group_typing": EventName.TYPING_START,
    "group_stop_typing": EventName.TYPING_STOP,
}

# Wire events that always concern the receiving user.
SELF_EVENTS = frozenset({"added_to_group", "removed_from_group", "left_group"})

GROUP_WIRE_EVENTS = frozenset({"group_typing", "group_stop_typing"})

# Client → server.
TYPING_EVENTS: dict[tuple[ConversationKind, bool], str] = {
    (ConversationKind.DIRECT, True): "typing",
    (ConversationKind.DIRECT, False): "stop_typing",
    (ConversationKind.GROUP, True): "group_typing",
    (ConversationKind.GROUP, False): "group_stop_typing",
}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    name: str = ""
    size: int = 0
    type: str = "application/octet-stream"


class WireMessage(BaseModel):
    """ChatMessage as sent by the server (direct and group share one shape)."""

    model_config = ConfigDict(extra="ignore")

    message_id: int | None = Field(
        None, validation_alias=AliasChoices("chat_id", "Id", "id", "message_id"),
    )
    sender_id: int
    receiver_id: int | None = None
    group_id: int | None = Field(None, validation_alias=AliasChoices("GroupId", "group_id"))
    message: str | None = ""
    message_type: str = "text"
    files: list[WireAttachment] | None = None
    read_at: datetime | None = None
    is_delete: int = Field(0, validation_alias=AliasChoices("isDelete", "is_deleted"))
    created_at: datetime
    sender_name: str | None = None
    client_msg_id: str | None = None

    _utc = field_validator("read_at", "created_at")(_as_utc)

    @property
    def is_group(self) -> bool:
        return self.group_id is not None


class WireReceipt(BaseModel):
    """Payload of read and delete notifications."""

    model_config = ConfigDict(extra="ignore")

    message_id: int = Field(validation_alias=AliasChoices("chat_id", "message_id", "Id", "id"))
    read_at: datetime | None = None
    group_id: int | None = Field(None, validation_alias=AliasChoices("group_id", "GroupId"))
    sender_id: int | None = None
    receiver_id: int | None = None

    _utc = field_validator("read_at")(_as_utc)


class WireTyping(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: int = Field(validation_alias=AliasChoices("sender_id", "user_id"))
    group_id: int | None = Field(None, validation_alias=AliasChoices("group_id", "GroupId"))


class WireGroupEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    group_id: int = Field(validation_alias=AliasChoices("group_id", "GroupId", "Id"))
    group_name: str | None = Field(None, validation_alias=AliasChoices("group_name", "Name", "name"))
    user_id: int | None = None
    member_ids: list[int] = []

    @model_validator(mode="before")
    @classmethod
    def _unwrap_group(cls, data: Any) -> Any:
        # group_created carries the group record under "group".
        if isinstance(data, dict) and isinstance(data.get("group"), dict):
            return {**data["group"], **{k: v for k, v in data.items() if k != "group"}}
        return data


# REST-only records (groups and the conversation list).

class WireGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    group_id: int = Field(validation_alias=AliasChoices("Id", "id", "group_id"))
    name: str = Field(validation_alias=AliasChoices("Name", "name"))
    created_by: int | None = None
    created_by_name: str | None = None
    created_on: datetime | None = None
    member_count: int = 0

    _utc = field_validator("created_on")(_as_utc)


class WireGroupMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: int = Field(validation_alias=AliasChoices("UserId", "user_id"))
    user_name: str | None = None
    user_email: str | None = None
    user_image: str | None = None
    added_on: datetime | None = Field(None, validation_alias=AliasChoices("Added_on", "added_on"))
    is_active: bool = True

    _utc = field_validator("added_on")(_as_utc)

    @field_validator("is_active", mode="before")
    @classmethod
    def _bit_flag(cls, value: Any) -> Any:
        # MySQL BIT columns arrive as a serialized Buffer: {"type": "Buffer", "data": [1]}.
        if isinstance(value, dict):
            data = value.get("data") or [0]
            return bool(data[0])
        return value


class WireRecentChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chat_type: ConversationKind
    other_user_id: int | None = None
    group_id: int | None = None
    chat_name: str = ""
    chat_image: str | None = None
    last_message: str | None = ""
    last_message_type: str = "text"
    last_message_time: datetime | None = None
    has_unread: int = 0
    unread_count: int | None = None

    _utc = field_validator("last_message_time")(_as_utc)

    @model_validator(mode="after")
    def _has_target(self) -> WireRecentChat:
        target = self.group_id if self.chat_type == ConversationKind.GROUP else self.other_user_id
        if target is None:
            raise ValueError(f"{self.chat_type} chat without a target id")
        return self


class WireUnreadCount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    direct_unread: int = 0
    group_unread: int = 0
    total_unread: int = 0
