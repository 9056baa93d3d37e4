"""Consumer for onchain-message jobs: YoEvent -> message row -> notification."""

from __future__ import annotations

import logging
from datetime import timedelta

from yobox.domain.identity.resolver import AddressResolver, canonical_address, select_identity
from yobox.domain.jobs import JobOutcome, OnchainMessageJobData
from yobox.domain.messaging.models import OnchainRecordStatus
from yobox.domain.messaging.repository import DEFAULT_COOLDOWN, MessagingRepository
from yobox.domain.notifications.dispatch import Recipient, notify_users
from yobox.domain.onchain.decoder import decode_message_hint
from yobox.infra.queue import Job, JobQueue
from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

SUPER_YO_TITLE = "super yo ★"
USER_NOT_FOUND = "Farcaster user not found"
COOLDOWN_ACTIVE = "Message cooldown has not elapsed"
ALREADY_RECORDED = "Transaction already recorded"


class OnchainMessageWorker:
	"""Resolves both sides of a transfer, records the message and notifies the recipient.

	Unknown identities, an active cooldown and an already recorded transfer end
	the job with a rejected ``JobOutcome``; anything raised is retried by the queue.
	"""

	def __init__(
		self,
		*,
		resolver: AddressResolver,
		repository: MessagingRepository,
		notifications_queue: JobQueue,
		app_url: str,
		cooldown: timedelta = DEFAULT_COOLDOWN,
	) -> None:
		self.resolver = resolver
		self.repository = repository
		self.notifications_queue = notifications_queue
		self.app_url = app_url
		self.cooldown = cooldown

	async def handle(self, job: Job, payload: OnchainMessageJobData) -> JobOutcome:
		from_address = canonical_address(payload.from_address)
		to_address = canonical_address(payload.to_address)

		identities = await self.resolver.resolve_addresses([from_address, to_address])
		from_candidates = identities.get(from_address, [])
		to_candidates = identities.get(to_address, [])
		if not from_candidates or not to_candidates:
			_LOG.info(
				"onchain_worker.user_not_found",
				extra={
					"from_address": from_address,
					"to_address": to_address,
					"from_fids": [user.fid for user in from_candidates],
					"to_fids": [user.fid for user in to_candidates],
				},
			)
			obs_metrics.inc_onchain_outcome("user_not_found")
			return JobOutcome.rejected(USER_NOT_FOUND, from_address=from_address, to_address=to_address)

		hint = decode_message_hint(payload.data)
		sender = select_identity(from_candidates, hint.from_fid if hint else None)
		recipient = select_identity(to_candidates, hint.to_fid if hint else None)
		assert sender is not None and recipient is not None
		_LOG.info(
			"onchain_worker.identities_resolved",
			extra={"from_fid": sender.fid, "to_fid": recipient.fid, "hinted": hint is not None},
		)

		result = await self.repository.record_onchain_message(
			sender.fid,
			recipient.fid,
			payload.transaction_hash,
			cooldown=self.cooldown,
		)
		if result.status is OnchainRecordStatus.COOLDOWN:
			_LOG.info(
				"onchain_worker.cooldown_rejected",
				extra={"from_fid": sender.fid, "to_fid": recipient.fid, "last_message_at": result.last_message_at},
			)
			obs_metrics.inc_onchain_outcome("cooldown")
			return JobOutcome.rejected(COOLDOWN_ACTIVE, from_fid=sender.fid, to_fid=recipient.fid)
		if result.status is OnchainRecordStatus.DUPLICATE:
			_LOG.info("onchain_worker.duplicate_transfer", extra={"transaction_hash": payload.transaction_hash})
			obs_metrics.inc_onchain_outcome("duplicate")
			return JobOutcome.rejected(ALREADY_RECORDED, from_fid=sender.fid, to_fid=recipient.fid)

		message = result.message
		assert message is not None
		_LOG.info("onchain_worker.persisted", extra={"message_id": message.id, "transaction_hash": payload.transaction_hash})

		notified = False
		details = result.recipient.notification_details
		if details is not None:
			await notify_users(
				self.notifications_queue,
				[Recipient(token=details.token, url=details.url, fid=recipient.fid)],
				title=SUPER_YO_TITLE,
				body=f"from {sender.label}",
				target_url=self.app_url,
				notification_id=message.id,
			)
			notified = True
		obs_metrics.inc_onchain_outcome("created")
		return JobOutcome.ok(
			message_id=message.id,
			from_fid=sender.fid,
			to_fid=recipient.fid,
			notified=notified,
		)


__all__ = ["ALREADY_RECORDED", "COOLDOWN_ACTIVE", "OnchainMessageWorker", "SUPER_YO_TITLE", "USER_NOT_FOUND"]
