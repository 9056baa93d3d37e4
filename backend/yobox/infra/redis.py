"""Redis connection management.

Two logical connections are used: one for the identity/response cache and one
for the job queues (which may point at a different instance). Both are created
explicitly and handed to the components that need them, so tests can pass a
FakeRedis instance instead.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as redis

from yobox.settings import Settings


def create_redis_client(url: str, *, connect_timeout: float = 5.0) -> redis.Redis:
	return redis.from_url(
		url,
		decode_responses=True,
		socket_connect_timeout=connect_timeout,
		health_check_interval=30,
	)


@dataclass
class RedisClients:
	"""Cache and queue connections used by one process."""

	cache: redis.Redis
	queue: redis.Redis

	@classmethod
	def from_settings(cls, settings: Settings) -> "RedisClients":
		cache = create_redis_client(settings.redis_url, connect_timeout=settings.redis_connect_timeout_seconds)
		if settings.queue_redis_url == settings.redis_url:
			return cls(cache=cache, queue=cache)
		queue = create_redis_client(settings.queue_redis_url, connect_timeout=settings.redis_connect_timeout_seconds)
		return cls(cache=cache, queue=queue)

	async def close(self) -> None:
		await self.cache.aclose()
		if self.queue is not self.cache:
			await self.queue.aclose()
