"""Real-time transport: topic hub, Redis fan-out and reconnecting client.

Components:
- TopicHub / Session: In-process session multiplexer with bounded queues
- RedisTopicBridge: Cross-process fan-out over Redis pub/sub
- ReconnectingNotificationClient: aiohttp client with backoff and reconciliation
- ReconnectBackoff: Capped exponential reconnect delays
- user_topic / team_topic / ADMIN_UNASSIGNED_TOPIC / allowed_topics: Topic naming
- TransportConfig: TRANSPORT_* settings
"""

from src.transport.backoff import ReconnectBackoff
from src.transport.bridge import RedisTopicBridge
from src.transport.client import ReconnectingNotificationClient, TransportDisconnected
from src.transport.config import TransportConfig
from src.transport.hub import Session, TopicHub
from src.transport.topics import (
    ADMIN_UNASSIGNED_TOPIC,
    allowed_topics,
    is_valid_topic,
    team_topic,
    user_topic,
)

__all__ = [
    "ADMIN_UNASSIGNED_TOPIC",
    "ReconnectBackoff",
    "ReconnectingNotificationClient",
    "RedisTopicBridge",
    "Session",
    "TopicHub",
    "TransportConfig",
    "TransportDisconnected",
    "allowed_topics",
    "is_valid_topic",
    "team_topic",
    "user_topic",
]
