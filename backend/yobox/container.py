"""Explicitly constructed service graph shared by the API, workers and scripts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

import asyncpg
import httpx

from yobox.domain.identity.client import NeynarClient
from yobox.domain.identity.resolver import AddressResolver
from yobox.domain.messaging.repository import MessagingRepository, PostgresMessagingRepository
from yobox.domain.notifications.digest import DigestScheduler
from yobox.domain.notifications.preferences import NotificationPreferences
from yobox.domain.notifications.push import PushClient
from yobox.infra import postgres
from yobox.infra.redis import RedisClients
from yobox.obs.errors import ErrorReporter, LoggingErrorReporter
from yobox.settings import Settings
from yobox.workers.runner import Queues, build_queues

_LOG = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
	settings: Settings
	redis: RedisClients
	repository: MessagingRepository
	resolver: AddressResolver
	queues: Queues
	push: PushClient
	http: httpx.AsyncClient
	reporter: ErrorReporter = field(default_factory=LoggingErrorReporter)
	pool: Optional[asyncpg.Pool] = None

	@property
	def cooldown(self) -> timedelta:
		return timedelta(hours=self.settings.message_cooldown_hours)

	def digest(self) -> DigestScheduler:
		return DigestScheduler(
			repository=self.repository,
			resolver=self.resolver,
			queue=self.queues.notifications,
			redis=self.redis.queue,
			app_url=self.settings.app_url,
			semi_daily_hours=self.settings.digest_semi_daily_hours,
			reporter=self.reporter,
			lock_prefix=self.settings.queue_prefix,
		)

	def preferences(self) -> NotificationPreferences:
		return NotificationPreferences(self.repository, self.queues.notifications, app_url=self.settings.app_url)

	async def close(self) -> None:
		await self.http.aclose()
		await postgres.close_pool(self.pool)
		await self.redis.close()


async def build_container(settings: Settings, *, reporter: ErrorReporter | None = None) -> ServiceContainer:
	"""Open Redis, Postgres and HTTP clients and assemble the pipeline services."""
	redis_clients = RedisClients.from_settings(settings)
	pool = await postgres.create_pool(settings)
	http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
	lookup = NeynarClient(
		http=http,
		api_key=settings.neynar_api_key,
		base_url=settings.neynar_base_url,
		timeout=settings.http_timeout_seconds,
	)
	container = ServiceContainer(
		settings=settings,
		redis=redis_clients,
		repository=PostgresMessagingRepository(pool),
		resolver=AddressResolver(redis_clients.cache, lookup, ttl_seconds=settings.identity_cache_ttl_seconds),
		queues=build_queues(redis_clients.queue, prefix=settings.queue_prefix),
		push=PushClient(http=http, timeout=settings.http_timeout_seconds),
		http=http,
		reporter=reporter or LoggingErrorReporter(),
		pool=pool,
	)
	_LOG.info("container.ready", extra={"queue_prefix": settings.queue_prefix})
	return container


__all__ = ["ServiceContainer", "build_container"]
