from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class HistoryCursor:
    """Page-based cursor; page 1 holds the newest messages."""

    page: int = 1
    exhausted: bool = False

    def advance(self, received: int, page_size: int) -> HistoryCursor:
        return HistoryCursor(page=self.page + 1, exhausted=received < page_size)
