"""Job payload schemas and the job result type shared by producers and workers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from yobox.domain.errors import UnrecoverableJobError

NOTIFICATIONS_BULK_QUEUE_NAME = "notifications-bulk"
ONCHAIN_MESSAGE_QUEUE_NAME = "onchain-message"

# Push endpoints accept at most this many tokens per call.
MAX_NOTIFICATION_RECIPIENTS = 100


class NotificationRecipient(BaseModel):
	model_config = ConfigDict(frozen=True)

	token: str = Field(..., min_length=1)
	fid: Optional[int] = None


class NotificationsBulkJobData(BaseModel):
	"""One push call: up to 100 tokens that share a delivery endpoint."""

	kind: Literal["notifications_bulk"] = "notifications_bulk"
	notifications: List[NotificationRecipient] = Field(..., min_length=1, max_length=MAX_NOTIFICATION_RECIPIENTS)
	url: str = Field(..., min_length=1, description="Push endpoint of the client that issued the tokens")
	title: str = Field(..., min_length=1, max_length=32)
	body: str = Field(..., min_length=1, max_length=128)
	target_url: str = Field(..., max_length=256, description="Opened when the notification is tapped")
	notification_id: Optional[str] = Field(default=None, max_length=128)


class OnchainMessageJobData(BaseModel):
	"""A decoded YoEvent waiting to become a message row."""

	kind: Literal["onchain_message"] = "onchain_message"
	transaction_hash: str = Field(..., pattern=r"^0x[0-9a-fA-F]{1,64}$")
	from_address: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")
	to_address: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")
	# Decimal string; uint256 does not survive a float round trip
	amount: str = Field(..., pattern=r"^[0-9]+$")
	data: str = Field(default="0x", pattern=r"^0x([0-9a-fA-F]{2})*$")


JobPayload = Annotated[
	Union[NotificationsBulkJobData, OnchainMessageJobData],
	Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job_payload(raw: Any) -> NotificationsBulkJobData | OnchainMessageJobData:
	"""Validate a dequeued payload; a shape mismatch can never succeed on retry."""
	try:
		return _PAYLOAD_ADAPTER.validate_python(raw)
	except ValidationError as exc:
		raise UnrecoverableJobError(f"invalid job payload: {exc.error_count()} error(s)") from exc


@dataclass(frozen=True)
class JobOutcome:
	"""Terminal result of a job that did not raise.

	``success=False`` marks a business rejection (unknown identity, cooldown,
	duplicate transfer): the job completed and must not be retried.
	"""

	success: bool
	message: Optional[str] = None
	data: dict[str, Any] = field(default_factory=dict)

	@classmethod
	def ok(cls, message: str | None = None, **data: Any) -> "JobOutcome":
		return cls(success=True, message=message, data=data)

	@classmethod
	def rejected(cls, message: str, **data: Any) -> "JobOutcome":
		return cls(success=False, message=message, data=data)

	def to_dict(self) -> dict[str, Any]:
		return asdict(self)


__all__ = [
	"JobOutcome",
	"JobPayload",
	"MAX_NOTIFICATION_RECIPIENTS",
	"NOTIFICATIONS_BULK_QUEUE_NAME",
	"NotificationRecipient",
	"NotificationsBulkJobData",
	"ONCHAIN_MESSAGE_QUEUE_NAME",
	"OnchainMessageJobData",
	"parse_job_payload",
]
