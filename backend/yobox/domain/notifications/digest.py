"""Periodic digest of unseen inbound messages for users on batched delivery."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Sequence

from redis.asyncio import Redis

from yobox.domain.identity.resolver import AddressResolver
from yobox.domain.messaging.models import NotificationType, User
from yobox.domain.messaging.repository import MessagingRepository
from yobox.domain.notifications.dispatch import Recipient, notify_users
from yobox.infra.queue import JobQueue
from yobox.obs import metrics as obs_metrics
from yobox.obs.errors import ErrorReporter, LoggingErrorReporter

_LOG = logging.getLogger(__name__)

DIGEST_TITLE = "yo"
LOOKBACK = {
	NotificationType.HOURLY: timedelta(hours=1),
	NotificationType.SEMI_DAILY: timedelta(hours=12),
}
_RUN_LOCK_TTL_SECONDS = 2 * 60 * 60


def cadences_for(run_at: datetime, semi_daily_hours: Iterable[int] = (0, 12)) -> list[NotificationType]:
	"""Every run covers hourly users; runs at the configured UTC hours add semi-daily ones."""
	cadences = [NotificationType.HOURLY]
	if run_at.astimezone(timezone.utc).hour in set(semi_daily_hours):
		cadences.append(NotificationType.SEMI_DAILY)
	return cadences


def compose_digest_body(first_sender: str, distinct_senders: int) -> str:
	others = distinct_senders - 1
	if others <= 0:
		return f"from {first_sender}"
	return f"from {first_sender} and {others} other{'s' if others > 1 else ''}"


@dataclass
class CadenceSummary:
	sent: int = 0
	skipped: int = 0
	errors: int = 0
	locked: bool = False

	def to_dict(self) -> dict:
		return {"sent": self.sent, "skipped": self.skipped, "errors": self.errors, "locked": self.locked}


@dataclass
class DigestRunSummary:
	run_at: datetime
	cadences: dict[str, CadenceSummary] = field(default_factory=dict)

	def to_dict(self) -> dict:
		return {
			"run_at": self.run_at.isoformat(),
			"cadences": {name: summary.to_dict() for name, summary in self.cadences.items()},
		}


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class DigestScheduler:
	"""One digest notification per subscriber with new inbound messages."""

	def __init__(
		self,
		*,
		repository: MessagingRepository,
		resolver: AddressResolver,
		queue: JobQueue,
		redis: Redis,
		app_url: str,
		semi_daily_hours: Sequence[int] = (0, 12),
		reporter: ErrorReporter | None = None,
		lock_prefix: str = "yobox",
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.repository = repository
		self.resolver = resolver
		self.queue = queue
		self.redis = redis
		self.app_url = app_url
		self.semi_daily_hours = tuple(semi_daily_hours)
		self.reporter = reporter or LoggingErrorReporter()
		self.lock_prefix = lock_prefix
		self.clock = clock

	async def run(
		self,
		*,
		run_at: Optional[datetime] = None,
		cadences: Optional[Sequence[NotificationType]] = None,
		force: bool = False,
	) -> DigestRunSummary:
		run_at = run_at or self.clock()
		summary = DigestRunSummary(run_at=run_at)
		started = time.perf_counter()
		for cadence in cadences or cadences_for(run_at, self.semi_daily_hours):
			if not force and not await self._acquire_run_lock(cadence, run_at):
				_LOG.info("digest.run_locked", extra={"cadence": cadence.value})
				summary.cadences[cadence.value] = CadenceSummary(locked=True)
				continue
			summary.cadences[cadence.value] = await self.run_cadence(cadence, run_at=run_at)
		obs_metrics.record_job_run("digest", result="ok", duration_seconds=time.perf_counter() - started)
		_LOG.info("digest.run_finished", extra=summary.to_dict())
		return summary

	async def run_cadence(self, cadence: NotificationType, *, run_at: datetime) -> CadenceSummary:
		summary = CadenceSummary()
		since = run_at - LOOKBACK[cadence]
		subscribers = await self.repository.list_digest_subscribers(cadence)
		for user in subscribers:
			try:
				sent = await self._notify_user(user, since)
			except Exception as exc:  # noqa: BLE001 - one user must not abort the run
				summary.errors += 1
				obs_metrics.inc_digest(cadence.value, "error")
				self.reporter.capture_exception(
					exc,
					context={"source": "digest", "cadence": cadence.value, "fid": user.fid},
				)
				continue
			if sent:
				summary.sent += 1
				obs_metrics.inc_digest(cadence.value, "sent")
			else:
				summary.skipped += 1
				obs_metrics.inc_digest(cadence.value, "skipped")
		return summary

	async def _notify_user(self, user: User, since: datetime) -> bool:
		details = user.notification_details
		if details is None:
			return False
		messages = await self.repository.list_unseen_inbound(user.id, since)
		if not messages:
			return False

		# Newest first, so the first sender named is the latest one.
		sender_fids = list(dict.fromkeys(message.from_fid for message in messages))
		first_fid = sender_fids[0]
		profiles = await self.resolver.get_users_by_fids([first_fid])
		profile = profiles.get(first_fid)
		first_name = profile.label if profile is not None else f"!{first_fid}"

		await notify_users(
			self.queue,
			[Recipient(token=details.token, url=details.url, fid=user.fid)],
			title=DIGEST_TITLE,
			body=compose_digest_body(first_name, len(sender_fids)),
			target_url=self.app_url,
			notification_id=messages[0].id,
		)
		return True

	async def _acquire_run_lock(self, cadence: NotificationType, run_at: datetime) -> bool:
		bucket = run_at.astimezone(timezone.utc).strftime("%Y%m%d%H")
		key = f"{self.lock_prefix}:digest:{cadence.value}:{bucket}"
		return bool(await self.redis.set(key, "1", ex=_RUN_LOCK_TTL_SECONDS, nx=True))


__all__ = [
	"CadenceSummary",
	"DigestRunSummary",
	"DigestScheduler",
	"LOOKBACK",
	"cadences_for",
	"compose_digest_body",
]
