"""APScheduler wrapper for periodic pipeline jobs."""

from __future__ import annotations

from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger


class PipelineScheduler:
	"""Minimal wrapper around AsyncIOScheduler; all schedules are in UTC."""

	def __init__(self) -> None:
		self._scheduler = AsyncIOScheduler(timezone="UTC")
		self._started = False

	@property
	def running(self) -> bool:
		return self._started

	def start(self) -> None:
		if not self._started:
			self._scheduler.start()
			self._started = True

	def shutdown(self) -> None:
		if self._started:
			self._scheduler.shutdown(wait=False)
			self._started = False

	def schedule_hourly(self, job_id: str, func: Callable[[], Awaitable[object]], *, minute: int = 0) -> None:
		# Runs that overlap a slow predecessor are dropped rather than stacked
		trigger = CronTrigger(minute=minute, timezone="UTC")
		self._scheduler.add_job(
			func,
			trigger=trigger,
			id=job_id,
			replace_existing=True,
			max_instances=1,
			coalesce=True,
		)

	def job_ids(self) -> list[str]:
		return [job.id for job in self._scheduler.get_jobs()]


__all__ = ["PipelineScheduler"]
