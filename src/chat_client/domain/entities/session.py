from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import ConnectionState


@dataclass(slots=True)
class Session:
    """One authenticated realtime connection. Mutated only by the connection manager."""

    credential: str
    state: ConnectionState = ConnectionState.IDLE
    attempts: int = 0
    last_error: str | None = None
