"""Live transport configuration.

Controls per-session buffering, the Redis fan-out channel and the client
reconnect schedule. All settings can be overridden via ``TRANSPORT_*``
environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransportConfig(BaseSettings):
    """Configuration for the topic hub, Redis bridge and client."""

    model_config = SettingsConfigDict(
        env_prefix="TRANSPORT_",
        case_sensitive=False,
        extra="ignore",
    )

    session_queue_size: int = Field(
        default=256,
        ge=1,
        le=10_000,
        description="Frames buffered per session before new frames are dropped",
    )
    redis_channel: str = Field(
        default="router:topics",
        description="Redis pub/sub channel used for cross-process fan-out",
    )

    # Client reconnect schedule: 1s, 2s, 4s ... capped
    reconnect_base_delay: float = Field(default=1.0, gt=0.0)
    reconnect_max_delay: float = Field(default=30.0, gt=0.0)
    reconnect_multiplier: float = Field(default=2.0, ge=1.0)
    reconnect_jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Random +/- fraction applied to each reconnect delay",
    )
