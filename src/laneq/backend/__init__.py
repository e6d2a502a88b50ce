"""Queue storage backends."""

from laneq.backend.base import QueueBackend
from laneq.backend.redis import RedisBackend, create_redis

__all__ = [
    "QueueBackend",
    "RedisBackend",
    "create_redis",
]
