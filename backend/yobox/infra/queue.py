"""Durable Redis job queue with at-least-once delivery.

Layout per queue (``{prefix}:{queue}:...``):

- ``job:{id}``   hash holding the job record; its existence is the dedup key
- ``stream``     ready list, consumed through the ``workers`` consumer group
- ``delayed``    zset of job ids waiting out their backoff (score = ready at)
- ``completed``  zset of finished job ids (score = finished at)
- ``failed``     zset of job ids that exhausted their attempts

A job id stays reserved until its hash is removed, either explicitly or by the
retention policy (``remove_on_complete`` / ``remove_on_fail``).
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from redis.asyncio import Redis
from redis.exceptions import ResponseError, WatchError

from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

_GROUP = "workers"

Retention = Union[bool, int]


class JobState(str, Enum):
	WAITING = "waiting"
	ACTIVE = "active"
	DELAYED = "delayed"
	COMPLETED = "completed"
	FAILED = "failed"


@dataclass(frozen=True)
class JobOptions:
	"""Retry and retention policy; backoff is fixed (same delay before every retry)."""

	attempts: int = 1
	backoff_seconds: float = 0.0
	# True drops the record right away, False keeps it, an int keeps the newest N.
	remove_on_complete: Retention = False
	remove_on_fail: Retention = False


@dataclass
class Job:
	id: str
	name: str
	data: dict[str, Any]
	attempts: int = 1
	attempts_made: int = 0
	backoff_seconds: float = 0.0
	state: JobState = JobState.WAITING
	created_at: float = 0.0
	processed_at: Optional[float] = None
	finished_at: Optional[float] = None
	failed_reason: Optional[str] = None
	return_value: Optional[dict[str, Any]] = None
	remove_on_complete: Retention = False
	remove_on_fail: Retention = False

	@classmethod
	def from_hash(cls, job_id: str, raw: dict[str, str]) -> "Job":
		return_value = raw.get("return_value")
		return cls(
			id=job_id,
			name=raw.get("name", ""),
			data=json.loads(raw.get("data") or "{}"),
			attempts=int(raw.get("attempts") or 1),
			attempts_made=int(raw.get("attempts_made") or 0),
			backoff_seconds=float(raw.get("backoff_seconds") or 0.0),
			state=JobState(raw.get("state") or JobState.WAITING.value),
			created_at=float(raw.get("created_at") or 0.0),
			processed_at=_optional_float(raw.get("processed_at")),
			finished_at=_optional_float(raw.get("finished_at")),
			failed_reason=raw.get("failed_reason") or None,
			return_value=json.loads(return_value) if return_value else None,
			remove_on_complete=_decode_retention(raw.get("remove_on_complete")),
			remove_on_fail=_decode_retention(raw.get("remove_on_fail")),
		)

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"name": self.name,
			"data": self.data,
			"state": self.state.value,
			"attempts": self.attempts,
			"attempts_made": self.attempts_made,
			"created_at": self.created_at,
			"processed_at": self.processed_at,
			"finished_at": self.finished_at,
			"failed_reason": self.failed_reason,
			"return_value": self.return_value,
		}


@dataclass(frozen=True)
class BulkJob:
	name: str
	data: dict[str, Any]
	job_id: Optional[str] = None
	options: Optional[JobOptions] = None


@dataclass(frozen=True)
class ClaimedEntry:
	entry_id: str
	job_id: str


def _optional_float(value: Optional[str]) -> Optional[float]:
	return float(value) if value not in (None, "") else None


def _encode_retention(value: Retention) -> str:
	if value is True:
		return "true"
	if value is False:
		return "false"
	return str(int(value))


def _decode_retention(value: Optional[str]) -> Retention:
	if value in (None, "", "false"):
		return False
	if value == "true":
		return True
	return int(value)


@dataclass
class JobQueue:
	"""Producer and consumer primitives for one named queue."""

	redis: Redis
	name: str
	prefix: str = "yobox"
	default_options: JobOptions = field(default_factory=JobOptions)
	clock: Callable[[], float] = time.time
	_group_ready: bool = field(default=False, init=False, repr=False)

	# --- keys ---------------------------------------------------------------

	def _key(self, suffix: str) -> str:
		return f"{self.prefix}:{self.name}:{suffix}"

	def job_key(self, job_id: str) -> str:
		return self._key(f"job:{job_id}")

	@property
	def stream_key(self) -> str:
		return self._key("stream")

	@property
	def delayed_key(self) -> str:
		return self._key("delayed")

	@property
	def completed_key(self) -> str:
		return self._key("completed")

	@property
	def failed_key(self) -> str:
		return self._key("failed")

	# --- producer -----------------------------------------------------------

	async def add(
		self,
		name: str,
		data: dict[str, Any],
		*,
		job_id: str | None = None,
		options: JobOptions | None = None,
	) -> Job | None:
		"""Add a job; returns None when a job with ``job_id`` already exists."""
		opts = options or self.default_options
		job = Job(
			id=job_id or uuid.uuid4().hex,
			name=name,
			data=data,
			attempts=max(1, opts.attempts),
			backoff_seconds=opts.backoff_seconds,
			created_at=self.clock(),
			remove_on_complete=opts.remove_on_complete,
			remove_on_fail=opts.remove_on_fail,
		)
		key = self.job_key(job.id)
		fields = {
			"name": job.name,
			"data": json.dumps(job.data, separators=(",", ":")),
			"attempts": job.attempts,
			"attempts_made": 0,
			"backoff_seconds": job.backoff_seconds,
			"state": JobState.WAITING.value,
			"created_at": job.created_at,
			"remove_on_complete": _encode_retention(job.remove_on_complete),
			"remove_on_fail": _encode_retention(job.remove_on_fail),
		}
		async with self.redis.pipeline(transaction=True) as pipe:
			try:
				await pipe.watch(key)
				if await pipe.exists(key):
					return self._duplicate(job.id)
				pipe.multi()
				pipe.hset(key, mapping=fields)
				pipe.xadd(self.stream_key, {"job_id": job.id})
				await pipe.execute()
			except WatchError:
				# Another producer created the same id between WATCH and EXEC.
				return self._duplicate(job.id)
		obs_metrics.inc_job_enqueued(self.name)
		return job

	def _duplicate(self, job_id: str) -> None:
		obs_metrics.inc_job_deduplicated(self.name)
		_LOG.info("queue.duplicate_job", extra={"queue": self.name, "job_id": job_id})
		return None

	async def add_bulk(self, jobs: Iterable[BulkJob]) -> list[Job]:
		added: list[Job] = []
		for item in jobs:
			job = await self.add(item.name, item.data, job_id=item.job_id, options=item.options)
			if job is not None:
				added.append(job)
		return added

	# --- consumer -----------------------------------------------------------

	async def ensure_group(self) -> None:
		if self._group_ready:
			return
		try:
			await self.redis.xgroup_create(self.stream_key, _GROUP, id="0", mkstream=True)
		except ResponseError as exc:
			if "BUSYGROUP" not in str(exc):
				raise
		self._group_ready = True

	async def claim(self, consumer: str, *, count: int, block_ms: int | None = None) -> list[ClaimedEntry]:
		"""Atomically hand up to ``count`` ready jobs to ``consumer``."""
		await self.ensure_group()
		response = await self.redis.xreadgroup(
			_GROUP,
			consumer,
			streams={self.stream_key: ">"},
			count=count,
			block=block_ms,
		)
		return _entries_from_response(response)

	async def reclaim_stalled(self, consumer: str, *, min_idle_ms: int, count: int) -> list[ClaimedEntry]:
		"""Take over entries whose consumer died before acknowledging them."""
		await self.ensure_group()
		response = await self.redis.xautoclaim(
			self.stream_key,
			_GROUP,
			consumer,
			min_idle_time=min_idle_ms,
			start_id="0-0",
			count=count,
		)
		entries = response[1] if len(response) > 1 else []
		claimed = [
			ClaimedEntry(entry_id=entry_id, job_id=fields["job_id"])
			for entry_id, fields in entries
			if fields and "job_id" in fields
		]
		if claimed:
			obs_metrics.inc_job_reclaimed(self.name, len(claimed))
			_LOG.warning("queue.reclaimed_stalled", extra={"queue": self.name, "count": len(claimed)})
		return claimed

	async def start(self, job_id: str) -> Job | None:
		"""Load a claimed job and mark it active; None if the record was removed."""
		key = self.job_key(job_id)
		raw = await self.redis.hgetall(key)
		if not raw:
			return None
		job = Job.from_hash(job_id, raw)
		job.state = JobState.ACTIVE
		job.processed_at = self.clock()
		await self.redis.hset(key, mapping={"state": job.state.value, "processed_at": job.processed_at})
		return job

	async def ack(self, entry_id: str) -> None:
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.xack(self.stream_key, _GROUP, entry_id)
			pipe.xdel(self.stream_key, entry_id)
			await pipe.execute()

	async def complete(self, job: Job, entry_id: str, return_value: dict[str, Any] | None) -> Job:
		finished_at = self.clock()
		done = replace(
			job,
			state=JobState.COMPLETED,
			attempts_made=job.attempts_made + 1,
			finished_at=finished_at,
			return_value=return_value,
		)
		mapping: dict[str, Any] = {
			"state": done.state.value,
			"attempts_made": done.attempts_made,
			"finished_at": finished_at,
		}
		if return_value is not None:
			mapping["return_value"] = json.dumps(return_value, separators=(",", ":"), default=str)
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.hset(self.job_key(job.id), mapping=mapping)
			pipe.zadd(self.completed_key, {job.id: finished_at})
			pipe.xack(self.stream_key, _GROUP, entry_id)
			pipe.xdel(self.stream_key, entry_id)
			await pipe.execute()
		await self._apply_retention(self.completed_key, job.remove_on_complete)
		obs_metrics.inc_job_finished(self.name, "completed")
		return done

	async def fail(self, job: Job, entry_id: str, error: BaseException, *, retry: bool = True) -> JobState:
		"""Record a failed attempt; schedules a retry while attempts remain."""
		now = self.clock()
		attempts_made = job.attempts_made + 1
		reason = str(error) or type(error).__name__
		key = self.job_key(job.id)
		async with self.redis.pipeline(transaction=True) as pipe:
			if retry and attempts_made < job.attempts:
				state = JobState.DELAYED
				pipe.hset(key, mapping={"state": state.value, "attempts_made": attempts_made, "failed_reason": reason})
				pipe.zadd(self.delayed_key, {job.id: now + job.backoff_seconds})
			else:
				state = JobState.FAILED
				pipe.hset(
					key,
					mapping={
						"state": state.value,
						"attempts_made": attempts_made,
						"failed_reason": reason,
						"finished_at": now,
					},
				)
				pipe.zadd(self.failed_key, {job.id: now})
			pipe.xack(self.stream_key, _GROUP, entry_id)
			pipe.xdel(self.stream_key, entry_id)
			await pipe.execute()
		if state is JobState.FAILED:
			await self._apply_retention(self.failed_key, job.remove_on_fail)
			obs_metrics.inc_job_finished(self.name, "failed")
		else:
			obs_metrics.inc_job_finished(self.name, "retried")
		return state

	async def promote_delayed(self, *, now: float | None = None, limit: int = 100) -> int:
		"""Move delayed jobs whose backoff elapsed back onto the ready stream."""
		due = await self.redis.zrangebyscore(self.delayed_key, "-inf", now if now is not None else self.clock(), start=0, num=limit)
		promoted = 0
		for job_id in due:
			# ZREM succeeds for exactly one process, which then owns the re-queue.
			if not await self.redis.zrem(self.delayed_key, job_id):
				continue
			async with self.redis.pipeline(transaction=True) as pipe:
				pipe.hset(self.job_key(job_id), "state", JobState.WAITING.value)
				pipe.xadd(self.stream_key, {"job_id": job_id})
				await pipe.execute()
			promoted += 1
		return promoted

	async def _apply_retention(self, set_key: str, policy: Retention) -> None:
		if policy is False:
			return
		keep = 0 if policy is True else int(policy)
		stale = await self.redis.zrange(set_key, 0, -(keep + 1))
		if not stale:
			return
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.zrem(set_key, *stale)
			pipe.delete(*(self.job_key(job_id) for job_id in stale))
			await pipe.execute()

	# --- inspection ---------------------------------------------------------

	async def get_job(self, job_id: str) -> Job | None:
		raw = await self.redis.hgetall(self.job_key(job_id))
		if not raw:
			return None
		return Job.from_hash(job_id, raw)

	async def get_counts(self) -> dict[str, int]:
		await self.ensure_group()
		in_stream = await self.redis.xlen(self.stream_key)
		pending = await self.redis.xpending(self.stream_key, _GROUP)
		active = int(pending.get("pending", 0)) if isinstance(pending, dict) else int(pending[0] or 0)
		return {
			JobState.WAITING.value: max(0, in_stream - active),
			JobState.ACTIVE.value: active,
			JobState.DELAYED.value: await self.redis.zcard(self.delayed_key),
			JobState.COMPLETED.value: await self.redis.zcard(self.completed_key),
			JobState.FAILED.value: await self.redis.zcard(self.failed_key),
		}

	async def get_jobs(self, state: JobState, *, start: int = 0, end: int = 49) -> list[Job]:
		"""Newest-first page of jobs in a settled state (delayed, completed or failed)."""
		set_key = {
			JobState.DELAYED: self.delayed_key,
			JobState.COMPLETED: self.completed_key,
			JobState.FAILED: self.failed_key,
		}.get(state)
		if set_key is None:
			raise ValueError(f"cannot list jobs in state {state.value}")
		job_ids = await self.redis.zrevrange(set_key, start, end)
		jobs: list[Job] = []
		for job_id in job_ids:
			job = await self.get_job(job_id)
			if job is not None:
				jobs.append(job)
		return jobs

	async def retry_job(self, job_id: str) -> bool:
		"""Re-queue a failed job with a fresh attempt budget."""
		if not await self.redis.zrem(self.failed_key, job_id):
			return False
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.hset(self.job_key(job_id), mapping={"state": JobState.WAITING.value, "attempts_made": 0})
			pipe.hdel(self.job_key(job_id), "failed_reason", "finished_at")
			pipe.xadd(self.stream_key, {"job_id": job_id})
			await pipe.execute()
		_LOG.info("queue.retry_failed_job", extra={"queue": self.name, "job_id": job_id})
		return True

	async def remove_job(self, job_id: str) -> bool:
		"""Drop a job record; this also releases its id for deduplication."""
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.delete(self.job_key(job_id))
			pipe.zrem(self.delayed_key, job_id)
			pipe.zrem(self.completed_key, job_id)
			pipe.zrem(self.failed_key, job_id)
			removed, *_ = await pipe.execute()
		return bool(removed)


def _entries_from_response(response: Any) -> list[ClaimedEntry]:
	if not response:
		return []
	if isinstance(response, dict):
		streams = list(response.values())
	else:
		streams = [entries for _stream, entries in response]
	claimed: list[ClaimedEntry] = []
	for entries in streams:
		for entry_id, fields in entries:
			if fields and "job_id" in fields:
				claimed.append(ClaimedEntry(entry_id=entry_id, job_id=fields["job_id"]))
	return claimed


__all__ = [
	"BulkJob",
	"ClaimedEntry",
	"Job",
	"JobOptions",
	"JobQueue",
	"JobState",
]
