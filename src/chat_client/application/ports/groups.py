from __future__ import annotations

from typing import Protocol


class GroupCommands(Protocol):
    async def leave_group(self, group_id: int) -> None: ...

    async def delete_group(self, group_id: int) -> None:
        """Delete a group the local user created."""
        ...
