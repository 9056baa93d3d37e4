"""Users and messages as the pipeline reads and writes them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

ONCHAIN_MESSAGE_TEXT = "yo"


class NotificationType(str, Enum):
	ALL = "all"
	HOURLY = "hourly"
	SEMI_DAILY = "semi_daily"


@dataclass(slots=True, frozen=True)
class NotificationDetails:
	"""Push endpoint plus the opaque token the client issued for one user."""

	url: str
	token: str


@dataclass(slots=True)
class User:
	id: str
	fid: int
	notification_type: NotificationType = NotificationType.ALL
	notification_url: Optional[str] = None
	notification_token: Optional[str] = None
	created_at: Optional[datetime] = None

	@property
	def notification_details(self) -> Optional[NotificationDetails]:
		if self.notification_url and self.notification_token:
			return NotificationDetails(url=self.notification_url, token=self.notification_token)
		return None


@dataclass(slots=True)
class Message:
	id: str
	from_user_id: str
	to_user_id: str
	message: str
	created_at: datetime
	is_onchain: bool = False
	transaction_hash: Optional[str] = None


@dataclass(slots=True)
class InboundMessage:
	"""A message received by a digest subscriber, with the sender's fid attached."""

	id: str
	from_user_id: str
	from_fid: int
	created_at: datetime


class OnchainRecordStatus(str, Enum):
	CREATED = "created"
	COOLDOWN = "cooldown"
	DUPLICATE = "duplicate"


@dataclass(slots=True)
class OnchainRecordResult:
	status: OnchainRecordStatus
	sender: User
	recipient: User
	message: Optional[Message] = None
	# Timestamp of the message that put the pair in cooldown
	last_message_at: Optional[datetime] = None

	@property
	def created(self) -> bool:
		return self.status is OnchainRecordStatus.CREATED


__all__ = [
	"InboundMessage",
	"Message",
	"NotificationDetails",
	"NotificationType",
	"ONCHAIN_MESSAGE_TEXT",
	"OnchainRecordResult",
	"OnchainRecordStatus",
	"User",
]
