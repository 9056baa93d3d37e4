"""Consumer loop shared by every queue worker."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

from yobox.domain.errors import UnrecoverableJobError
from yobox.domain.jobs import JobOutcome, parse_job_payload
from yobox.infra.queue import ClaimedEntry, Job, JobQueue, JobState
from yobox.obs import metrics as obs_metrics
from yobox.obs.errors import ErrorReporter, LoggingErrorReporter
from yobox.obs.logging import bind_job_context, reset_context

_LOG = logging.getLogger(__name__)

JobHandler = Callable[[Job, Any], Awaitable[Optional[JobOutcome]]]


def _consumer_name() -> str:
	return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class QueueWorker:
	"""Pulls jobs from one queue and runs up to ``concurrency`` of them at a time."""

	def __init__(
		self,
		queue: JobQueue,
		handler: JobHandler,
		*,
		payload_type: type | None = None,
		concurrency: int = 1,
		reporter: ErrorReporter | None = None,
		job_timeout: float | None = None,
		block_ms: int = 1000,
		stalled_interval: float = 300.0,
		error_backoff: float = 1.0,
		consumer_name: str | None = None,
	) -> None:
		self.queue = queue
		self.handler = handler
		self.payload_type = payload_type
		self.concurrency = max(1, concurrency)
		self.reporter = reporter or LoggingErrorReporter()
		self.job_timeout = job_timeout
		self.block_ms = block_ms
		self.stalled_interval = stalled_interval
		self.error_backoff = error_backoff
		self.consumer_name = consumer_name or _consumer_name()
		self._running = False

	def stop(self) -> None:
		self._running = False

	async def process_once(self) -> int:
		"""Claim one batch without blocking and run it to completion."""
		await self.queue.promote_delayed()
		entries = await self.queue.claim(self.consumer_name, count=self.concurrency)
		if not entries:
			return 0
		await asyncio.gather(*(self._process(entry) for entry in entries))
		return len(entries)

	async def run_forever(self) -> None:
		self._running = True
		in_flight: set[asyncio.Task] = set()
		last_reclaim = 0.0
		_LOG.info(
			"queue_worker.started",
			extra={"queue": self.queue.name, "concurrency": self.concurrency, "consumer": self.consumer_name},
		)
		try:
			while self._running:
				free = self.concurrency - len(in_flight)
				if free <= 0:
					await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
					continue
				reclaim = time.monotonic() - last_reclaim >= self.stalled_interval
				if reclaim:
					last_reclaim = time.monotonic()
				try:
					entries = await self._next_entries(free, reclaim=reclaim)
				except Exception:  # noqa: BLE001 - a Redis hiccup must not end the consumer
					_LOG.exception("queue_worker.loop_failed", extra={"queue": self.queue.name})
					obs_metrics.inc_worker_loop_error(self.queue.name)
					await asyncio.sleep(self.error_backoff)
					continue
				for entry in entries:
					task = asyncio.create_task(self._process(entry), name=f"{self.queue.name}-{entry.job_id}")
					in_flight.add(task)
					task.add_done_callback(in_flight.discard)
		finally:
			if in_flight:
				await asyncio.gather(*in_flight, return_exceptions=True)
			_LOG.info("queue_worker.stopped", extra={"queue": self.queue.name})

	async def _next_entries(self, free: int, *, reclaim: bool) -> list[ClaimedEntry]:
		await self.queue.promote_delayed()
		entries: list[ClaimedEntry] = []
		if reclaim:
			entries = await self.queue.reclaim_stalled(
				self.consumer_name,
				min_idle_ms=int(self.stalled_interval * 1000),
				count=free,
			)
		if not entries:
			entries = await self.queue.claim(self.consumer_name, count=free, block_ms=self.block_ms)
		return entries

	async def _process(self, entry: ClaimedEntry) -> None:
		job = await self.queue.start(entry.job_id)
		if job is None:
			# Record removed while the entry was still queued.
			await self.queue.ack(entry.entry_id)
			return
		token = bind_job_context(queue=self.queue.name, job_id=job.id, job_name=job.name)
		started = time.perf_counter()
		try:
			try:
				payload = parse_job_payload(job.data)
				if self.payload_type is not None and not isinstance(payload, self.payload_type):
					raise UnrecoverableJobError(f"{type(payload).__name__} does not belong on queue {self.queue.name}")
				if self.job_timeout:
					outcome = await asyncio.wait_for(self.handler(job, payload), timeout=self.job_timeout)
				else:
					outcome = await self.handler(job, payload)
			except Exception as exc:  # noqa: BLE001 - every failure goes through the retry policy
				obs_metrics.observe_job_duration(self.queue.name, time.perf_counter() - started)
				await self._handle_failure(job, entry, exc)
				return
			obs_metrics.observe_job_duration(self.queue.name, time.perf_counter() - started)
			await self.queue.complete(job, entry.entry_id, outcome.to_dict() if outcome is not None else None)
			_LOG.info(
				"queue_worker.job_completed",
				extra={"success": outcome.success if outcome is not None else True},
			)
		finally:
			reset_context(token)

	async def _handle_failure(self, job: Job, entry: ClaimedEntry, exc: Exception) -> None:
		self.reporter.capture_exception(
			exc,
			context={
				"source": "queue",
				"queue": self.queue.name,
				"job_id": job.id,
				"job_name": job.name,
				"job_data": job.data,
				"attempt": job.attempts_made + 1,
			},
		)
		retry = not isinstance(exc, UnrecoverableJobError)
		state = await self.queue.fail(job, entry.entry_id, exc, retry=retry)
		level = logging.ERROR if state is JobState.FAILED else logging.WARNING
		_LOG.log(
			level,
			"queue_worker.job_failed",
			extra={"state": state.value, "error": str(exc) or type(exc).__name__, "attempt": job.attempts_made + 1},
		)


__all__ = ["JobHandler", "QueueWorker"]
