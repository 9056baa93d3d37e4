"""Turns one logical notification into bulk queue jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
from urllib.parse import urlparse

from yobox.domain.jobs import MAX_NOTIFICATION_RECIPIENTS, NotificationRecipient, NotificationsBulkJobData
from yobox.infra.queue import BulkJob, Job, JobQueue

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
	token: str
	url: str
	fid: Optional[int] = None


@dataclass(frozen=True)
class RecipientChunk:
	url: str
	chunk_id: int
	recipients: tuple[Recipient, ...]


def chunk_recipients(recipients: Iterable[Recipient], size: int = MAX_NOTIFICATION_RECIPIENTS) -> list[RecipientChunk]:
	"""Group by endpoint URL (first-seen order), then slice each group into chunks of ``size``."""
	by_url: dict[str, list[Recipient]] = {}
	for recipient in recipients:
		by_url.setdefault(recipient.url, []).append(recipient)
	chunks: list[RecipientChunk] = []
	for url, group in by_url.items():
		for chunk_id, start in enumerate(range(0, len(group), size)):
			chunks.append(RecipientChunk(url=url, chunk_id=chunk_id, recipients=tuple(group[start : start + size])))
	return chunks


def chunk_job_name(title: str, url: str, chunk_id: int) -> str:
	return f"{title}-{urlparse(url).hostname or url}-{chunk_id}"


async def notify_users(
	queue: JobQueue,
	recipients: Sequence[Recipient],
	*,
	title: str,
	body: str,
	target_url: str,
	notification_id: Optional[str] = None,
) -> list[Job]:
	"""Queue one notifications-bulk job per (endpoint, chunk of at most 100 tokens)."""
	entries: list[BulkJob] = []
	for chunk in chunk_recipients(recipients):
		payload = NotificationsBulkJobData(
			notifications=[NotificationRecipient(token=item.token, fid=item.fid) for item in chunk.recipients],
			url=chunk.url,
			title=title,
			body=body,
			target_url=target_url,
			notification_id=notification_id,
		)
		entries.append(BulkJob(name=chunk_job_name(title, chunk.url, chunk.chunk_id), data=payload.model_dump(mode="json")))
	jobs = await queue.add_bulk(entries)
	_LOG.info(
		"notifications.enqueued",
		extra={"title": title, "recipients": len(recipients), "jobs": len(jobs)},
	)
	return jobs


__all__ = ["Recipient", "RecipientChunk", "chunk_job_name", "chunk_recipients", "notify_users"]
