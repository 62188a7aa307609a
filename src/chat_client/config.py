from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8000"
    CHAT_API_PREFIX: str = "/api/chat"
    HTTP_TIMEOUT_SECONDS: float = 15.0

    SOCKET_URL: str | None = None
    SOCKET_PATH: str = "socket.io"
    SOCKET_TRANSPORTS: list[str] = ["polling", "websocket"]

    CONNECT_TIMEOUT_SECONDS: float = 10.0
    RECONNECT_ATTEMPTS: int = 5
    RECONNECT_DELAY_SECONDS: float = 1.0

    SEND_ACK_TIMEOUT_SECONDS: float = 10.0
    TYPING_INDICATOR_SECONDS: float = 3.0
    HISTORY_PAGE_SIZE: int = 50

    ACCESS_TOKEN: str = ""
    USER_ID: int = 0

    LOG_LEVEL: str = "INFO"

    @property
    def chat_api_url(self) -> str:
        return f"{self.API_BASE_URL.rstrip('/')}{self.CHAT_API_PREFIX}"

    @property
    def socket_url(self) -> str:
        return (self.SOCKET_URL or self.API_BASE_URL).rstrip("/")

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
