from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ValidationError(AppError):
    pass


class CapacityExceededError(AppError):
    """Raised when opening one more distinct conversation than the policy allows."""

    def __init__(self, detail: str = "", *, limit: int = 0) -> None:
        self.limit = limit
        super().__init__(detail)


class AuthenticationError(AppError):
    """The server rejected the credential. Never retried."""


class TransportError(AppError):
    """Connection-level failure (refused, dropped, timed out). Retryable."""


class CommandRejectedError(AppError):
    """The server refused an outbound command (send, read receipt, delete)."""

    def __init__(self, detail: str = "", *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)
