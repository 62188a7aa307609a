from __future__ import annotations

from typing import Any, Callable, Protocol

RawEventCallback = Callable[[str, Any], None]
DropCallback = Callable[[str], None]


class Transport(Protocol):
    """Bidirectional realtime event stream (one live connection at a time)."""

    @property
    def connected(self) -> bool: ...

    async def open(
        self,
        credential: str,
        on_event: RawEventCallback,
        on_drop: DropCallback,
    ) -> None:
        """Connect and start delivering events.

        Raises AuthenticationError when the credential is rejected and
        TransportError for anything else.
        """
        ...

    async def close(self) -> None: ...

    async def emit(self, event: str, data: dict[str, Any]) -> None: ...
