"""Consumer for notifications-bulk jobs."""

from __future__ import annotations

import logging
from typing import Optional

from yobox.domain.jobs import JobOutcome, NotificationsBulkJobData
from yobox.domain.messaging.repository import MessagingRepository
from yobox.domain.notifications.push import PushClient
from yobox.infra.queue import Job

_LOG = logging.getLogger(__name__)


class NotificationsBulkWorker:
	"""Sends one chunk to its push endpoint.

	Push errors (non-200, malformed body, rate limited tokens) propagate so the
	queue retries the whole chunk with backoff.
	"""

	def __init__(self, *, push: PushClient, repository: Optional[MessagingRepository] = None) -> None:
		self.push = push
		self.repository = repository

	async def handle(self, job: Job, payload: NotificationsBulkJobData) -> JobOutcome:
		tokens = [recipient.token for recipient in payload.notifications]
		result = await self.push.send(
			url=payload.url,
			tokens=tokens,
			title=payload.title,
			body=payload.body,
			target_url=payload.target_url,
			notification_id=payload.notification_id,
		)
		cleared = 0
		if result.invalid_tokens and self.repository is not None:
			cleared = await self.repository.clear_notification_tokens(result.invalid_tokens)
			_LOG.info(
				"notifications_worker.invalid_tokens_cleared",
				extra={"invalid": len(result.invalid_tokens), "cleared": cleared},
			)
		_LOG.info(
			"notifications_worker.sent",
			extra={"recipients": len(tokens), "successful": len(result.successful_tokens), "url": payload.url},
		)
		return JobOutcome.ok(
			notification_id=result.notification_id,
			successful=len(result.successful_tokens),
			invalid=len(result.invalid_tokens),
			cleared=cleared,
		)


__all__ = ["NotificationsBulkWorker"]
