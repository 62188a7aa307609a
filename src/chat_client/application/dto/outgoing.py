from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OutgoingFile:
    name: str
    content: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)
