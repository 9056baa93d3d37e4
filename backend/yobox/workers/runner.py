"""Queue definitions and helpers for wiring queue workers into an event loop."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from redis.asyncio import Redis

from yobox.domain.jobs import (
	NOTIFICATIONS_BULK_QUEUE_NAME,
	ONCHAIN_MESSAGE_QUEUE_NAME,
	NotificationsBulkJobData,
	OnchainMessageJobData,
)
from yobox.infra.queue import JobOptions, JobQueue
from yobox.workers.harness import QueueWorker
from yobox.workers.notifications import NotificationsBulkWorker
from yobox.workers.onchain import OnchainMessageWorker

if TYPE_CHECKING:
	from yobox.container import ServiceContainer

NOTIFICATIONS_BULK_OPTIONS = JobOptions(
	attempts=3,
	backoff_seconds=30.0,
	remove_on_complete=1000,
	remove_on_fail=1000,
)
# Onchain jobs are kept so a transfer's job id stays reserved.
ONCHAIN_MESSAGE_OPTIONS = JobOptions(
	attempts=2,
	backoff_seconds=2.0,
	remove_on_complete=False,
	remove_on_fail=False,
)


@dataclass(frozen=True)
class Queues:
	notifications: JobQueue
	onchain: JobQueue

	def all(self) -> tuple[JobQueue, ...]:
		return (self.notifications, self.onchain)

	def by_name(self, name: str) -> Optional[JobQueue]:
		for queue in self.all():
			if queue.name == name:
				return queue
		return None


def build_queues(redis: Redis, *, prefix: str = "yobox") -> Queues:
	return Queues(
		notifications=JobQueue(
			redis,
			NOTIFICATIONS_BULK_QUEUE_NAME,
			prefix=prefix,
			default_options=NOTIFICATIONS_BULK_OPTIONS,
		),
		onchain=JobQueue(
			redis,
			ONCHAIN_MESSAGE_QUEUE_NAME,
			prefix=prefix,
			default_options=ONCHAIN_MESSAGE_OPTIONS,
		),
	)


def build_workers(container: "ServiceContainer") -> list[QueueWorker]:
	"""One QueueWorker per queue, configured from the container's settings."""
	settings = container.settings
	onchain = OnchainMessageWorker(
		resolver=container.resolver,
		repository=container.repository,
		notifications_queue=container.queues.notifications,
		app_url=settings.app_url,
		cooldown=container.cooldown,
	)
	notifications = NotificationsBulkWorker(push=container.push, repository=container.repository)
	return [
		QueueWorker(
			container.queues.notifications,
			notifications.handle,
			payload_type=NotificationsBulkJobData,
			concurrency=settings.notifications_worker_concurrency,
			reporter=container.reporter,
			job_timeout=settings.job_timeout_seconds,
			stalled_interval=settings.job_stalled_interval_seconds,
		),
		QueueWorker(
			container.queues.onchain,
			onchain.handle,
			payload_type=OnchainMessageJobData,
			concurrency=settings.onchain_worker_concurrency,
			reporter=container.reporter,
			job_timeout=settings.job_timeout_seconds,
			stalled_interval=settings.job_stalled_interval_seconds,
		),
	]


def spawn_workers(
	workers: Iterable[QueueWorker],
	*,
	loop: Optional[asyncio.AbstractEventLoop] = None,
) -> list[asyncio.Task]:
	"""Create one asyncio task per worker's consumer loop."""
	event_loop = loop or asyncio.get_running_loop()
	return [
		event_loop.create_task(worker.run_forever(), name=f"queue-worker-{worker.queue.name}")
		for worker in workers
	]


__all__ = [
	"NOTIFICATIONS_BULK_OPTIONS",
	"ONCHAIN_MESSAGE_OPTIONS",
	"Queues",
	"build_queues",
	"build_workers",
	"spawn_workers",
]
