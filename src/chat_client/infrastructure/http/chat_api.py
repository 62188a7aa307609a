"""REST client for the chat API (history, messages, groups and the conversation list)."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import Any, Callable, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chat_client.application.dto.history import HistoryCursor
from chat_client.application.dto.outgoing import OutgoingFile
from chat_client.application.exceptions import (
    AuthenticationError,
    CommandRejectedError,
    TransportError,
    ValidationError,
)
from chat_client.config import settings
from chat_client.domain.entities.conversation import ConversationKey
from chat_client.domain.entities.group import Group, GroupMember
from chat_client.domain.entities.message import Message
from chat_client.domain.entities.summary import RecentChat, UnreadTotals
from chat_client.infrastructure.mappers.group import (
    wire_to_group,
    wire_to_member,
    wire_to_recent_chat,
    wire_to_unread_totals,
)
from chat_client.infrastructure.mappers.message import wire_to_entity
from chat_client.infrastructure.transport.protocol import (
    WireGroup,
    WireGroupMember,
    WireMessage,
    WireRecentChat,
    WireUnreadCount,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]
T = TypeVar("T")


class ChatApiClient:
    """Implements HistoryFetcher, MessageCommands and GroupCommands over httpx.

    The bearer token is read through ``token_provider`` on every request so a
    refreshed credential is picked up without rebuilding the client.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.chat_api_url,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> ChatApiClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- HistoryFetcher ------------------------------------------------------

    async def fetch_page(
        self,
        conversation: ConversationKey,
        cursor: HistoryCursor,
        page_size: int,
    ) -> list[Message]:
        if conversation.is_group:
            path, params = "/group/conversation", {"group_id": conversation.id}
        else:
            path, params = "/direct/conversation", {"other_user_id": conversation.id}
        params.update(page=cursor.page, limit=page_size)

        data = await self._request("GET", path, params=params)
        messages: list[Message] = []
        for row in data if isinstance(data, list) else []:
            try:
                messages.append(wire_to_entity(WireMessage.model_validate(row), conversation))
            except PydanticValidationError:
                logger.warning("Dropping malformed history row in %s", conversation, exc_info=True)
        return messages

    # -- MessageCommands -----------------------------------------------------

    async def send(
        self,
        conversation: ConversationKey,
        body: str,
        files: Sequence[OutgoingFile],
        client_msg_id: str,
    ) -> Message:
        if conversation.is_group:
            path, form = "/group/send", {"group_id": str(conversation.id)}
        else:
            path, form = "/direct/send", {"receiver_id": str(conversation.id)}
        form.update(message=body, client_msg_id=client_msg_id)
        upload = [("files", (f.name, f.content, f.mime_type)) for f in files]

        data = await self._request("POST", path, data=form, files=upload or None)
        message = self._to_message(data, conversation)
        if message.client_msg_id is None:
            message = replace(message, client_msg_id=client_msg_id)
        return message

    async def mark_read(self, conversation: ConversationKey, message_id: int) -> None:
        if conversation.is_group:
            await self._request("POST", "/group/mark-read", json={"message_id": message_id})
        else:
            await self._request("POST", "/direct/mark-read", json={"chat_id": message_id})

    async def delete(self, conversation: ConversationKey, message_id: int) -> None:
        prefix = "group" if conversation.is_group else "direct"
        await self._request("DELETE", f"/{prefix}/{message_id}")

    # -- groups --------------------------------------------------------------

    async def create_group(self, name: str, member_ids: Sequence[int]) -> Group:
        name = name.strip()
        if not name:
            raise ValidationError("Group name is required")
        data = await self._request("POST", "/groups", json={"name": name, "member_ids": list(member_ids)})
        try:
            return wire_to_group(WireGroup.model_validate(data))
        except PydanticValidationError as exc:
            raise CommandRejectedError(f"Malformed group in response: {exc}") from exc

    async def list_groups(self) -> list[Group]:
        data = await self._request("GET", "/groups")
        return self._rows(data, WireGroup, wire_to_group, "group")

    async def group_members(self, group_id: int) -> list[GroupMember]:
        data = await self._request("GET", f"/groups/{group_id}/members")
        return self._rows(data, WireGroupMember, wire_to_member, "group member")

    async def add_group_members(self, group_id: int, member_ids: Sequence[int]) -> None:
        await self._request("POST", f"/groups/{group_id}/members", json={"member_ids": list(member_ids)})

    async def remove_group_member(self, group_id: int, user_id: int) -> None:
        await self._request("DELETE", f"/groups/{group_id}/members", json={"user_id": user_id})

    async def leave_group(self, group_id: int) -> None:
        await self._request("POST", f"/groups/{group_id}/leave")

    async def delete_group(self, group_id: int) -> None:
        await self._request("DELETE", f"/groups/{group_id}")

    # -- conversation list ---------------------------------------------------

    async def recent_chats(self) -> list[RecentChat]:
        data = await self._request("GET", "/recent-chats")
        return self._rows(data, WireRecentChat, wire_to_recent_chat, "recent chat")

    async def unread_totals(self) -> UnreadTotals:
        data = await self._request("GET", "/unread-count")
        try:
            return wire_to_unread_totals(WireUnreadCount.model_validate(data or {}))
        except PydanticValidationError as exc:
            raise CommandRejectedError(f"Malformed unread count in response: {exc}") from exc

    # -- internals -----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise AuthenticationError(_detail(response))
        if response.is_error:
            logger.warning("%s %s rejected: %d", method, path, response.status_code)
            raise CommandRejectedError(_detail(response), status_code=response.status_code)

        if not response.content:
            return None
        body = response.json()
        return body.get("data") if isinstance(body, dict) else body

    @staticmethod
    def _to_message(row: Any, conversation: ConversationKey) -> Message:
        try:
            wire = WireMessage.model_validate(row)
        except PydanticValidationError as exc:
            raise CommandRejectedError(f"Malformed message in response: {exc}") from exc
        return wire_to_entity(wire, conversation)

    @staticmethod
    def _rows(data: Any, model: type[BaseModel], convert: Callable[[Any], T], label: str) -> list[T]:
        items: list[T] = []
        for row in data if isinstance(data, list) else []:
            try:
                items.append(convert(model.model_validate(row)))
            except PydanticValidationError:
                logger.warning("Dropping malformed %s row", label, exc_info=True)
        return items


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)
