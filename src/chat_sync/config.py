from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from chat_sync.application.policies.throttle import ThrottleLimits
from chat_sync.domain.value_objects.enums import OperationKind


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:3000"
    API_TOKEN: str = ""
    API_TIMEOUT_SECONDS: float = 15.0

    PUSH_URL: str = "http://localhost:3000"
    PUSH_PATH: str = "socket.io"
    PUSH_CONNECT_TIMEOUT_SECONDS: float = 10.0

    REDIS_URL: str = "redis://localhost:6379/0"
    CHANGE_FEED_ENABLED: bool = True
    CHANGE_FEED_STREAM_TEMPLATE: str = "conversations:{conversation_id}:messages"
    CHANGE_FEED_BLOCK_MS: int = 5000

    BACKOFF_BASE_DELAY: float = 1.0
    BACKOFF_MULTIPLIER: float = 2.0
    BACKOFF_MAX_DELAY: float = 30.0
    BACKOFF_MAX_RETRIES: int = 3
    BACKOFF_JITTER_RATIO: float = 0.1

    THROTTLE_JOIN_MIN_INTERVAL: float = 1.0
    THROTTLE_JOIN_MAX_CALLS: int = 5
    THROTTLE_JOIN_WINDOW: float = 10.0
    THROTTLE_LEAVE_MIN_INTERVAL: float = 1.0
    THROTTLE_LEAVE_MAX_CALLS: int = 5
    THROTTLE_LEAVE_WINDOW: float = 10.0
    THROTTLE_SEND_MIN_INTERVAL: float = 0.2
    THROTTLE_SEND_MAX_CALLS: int = 20
    THROTTLE_SEND_WINDOW: float = 10.0
    THROTTLE_SYNC_MIN_INTERVAL: float = 0.5
    THROTTLE_SYNC_MAX_CALLS: int = 10
    THROTTLE_SYNC_WINDOW: float = 30.0
    THROTTLE_READ_MIN_INTERVAL: float = 0.5
    THROTTLE_READ_MAX_CALLS: int = 20
    THROTTLE_READ_WINDOW: float = 10.0
    THROTTLE_TYPING_MIN_INTERVAL: float = 1.0
    THROTTLE_TYPING_MAX_CALLS: int = 10
    THROTTLE_TYPING_WINDOW: float = 10.0

    CACHE_MESSAGES_TTL: float = 60.0
    CACHE_CONVERSATION_TTL: float = 300.0

    HISTORY_PAGE_SIZE: int = 50
    JOIN_TIMEOUT_SECONDS: float = 10.0
    LEAVE_TIMEOUT_SECONDS: float = 5.0
    TYPING_STOP_SECONDS: float = 3.0

    BRIDGE_HOST: str = "127.0.0.1"
    BRIDGE_PORT: int = 8765
    CORS_ORIGINS: list[str] = ["*"]
    WS_HEARTBEAT_SECONDS: int = 30

    def throttle_limits(self) -> dict[OperationKind, ThrottleLimits]:
        return {
            kind: ThrottleLimits(
                min_interval=getattr(self, f"THROTTLE_{kind.name}_MIN_INTERVAL"),
                max_calls=getattr(self, f"THROTTLE_{kind.name}_MAX_CALLS"),
                window=getattr(self, f"THROTTLE_{kind.name}_WINDOW"),
            )
            for kind in OperationKind
        }

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            throttle_limits=self.throttle_limits(),
            messages_ttl=self.CACHE_MESSAGES_TTL,
            conversation_ttl=self.CACHE_CONVERSATION_TTL,
            page_size=self.HISTORY_PAGE_SIZE,
            join_timeout=self.JOIN_TIMEOUT_SECONDS,
            leave_timeout=self.LEAVE_TIMEOUT_SECONDS,
            typing_stop=self.TYPING_STOP_SECONDS,
            change_feed_enabled=self.CHANGE_FEED_ENABLED,
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


def _default_limits() -> dict[OperationKind, ThrottleLimits]:
    return {kind: ThrottleLimits(min_interval=0.0, max_calls=1000, window=1.0) for kind in OperationKind}


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Per-session tuning, decoupled from the environment."""

    throttle_limits: dict[OperationKind, ThrottleLimits] = field(default_factory=_default_limits)
    messages_ttl: float = 60.0
    conversation_ttl: float = 300.0
    page_size: int = 50
    join_timeout: float = 10.0
    leave_timeout: float = 5.0
    typing_stop: float = 3.0
    change_feed_enabled: bool = True


settings = Settings()
