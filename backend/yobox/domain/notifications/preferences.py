"""Frame lifecycle events and per-user delivery settings."""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from yobox.domain.messaging.models import NotificationDetails, NotificationType, User
from yobox.domain.messaging.repository import MessagingRepository
from yobox.domain.notifications.dispatch import Recipient, notify_users
from yobox.infra.queue import JobQueue

_LOG = logging.getLogger(__name__)


class FrameNotificationDetails(BaseModel):
	url: str = Field(..., min_length=1)
	token: str = Field(..., min_length=1)


class FrameAdded(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	event: Literal["frame_added"] = "frame_added"
	notification_details: Optional[FrameNotificationDetails] = Field(default=None, alias="notificationDetails")


class FrameRemoved(BaseModel):
	event: Literal["frame_removed"] = "frame_removed"


class NotificationsEnabled(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	event: Literal["notifications_enabled"] = "notifications_enabled"
	notification_details: FrameNotificationDetails = Field(..., alias="notificationDetails")


class NotificationsDisabled(BaseModel):
	event: Literal["notifications_disabled"] = "notifications_disabled"


FrameEvent = Annotated[
	Union[FrameAdded, FrameRemoved, NotificationsEnabled, NotificationsDisabled],
	Field(discriminator="event"),
]

_FRAME_EVENT_ADAPTER: TypeAdapter[FrameEvent] = TypeAdapter(FrameEvent)


def parse_frame_event(raw: dict) -> FrameAdded | FrameRemoved | NotificationsEnabled | NotificationsDisabled:
	return _FRAME_EVENT_ADAPTER.validate_python(raw)


class NotificationPreferences:
	def __init__(self, repository: MessagingRepository, queue: JobQueue, *, app_url: str) -> None:
		self.repository = repository
		self.queue = queue
		self.app_url = app_url

	async def apply_frame_event(
		self,
		fid: int,
		event: FrameAdded | FrameRemoved | NotificationsEnabled | NotificationsDisabled,
	) -> Optional[User]:
		"""Store or clear delivery details; confirmations go out through the bulk queue."""
		details = getattr(event, "notification_details", None)
		if details is None:
			await self.repository.clear_notification_details(fid)
			_LOG.info("preferences.notifications_cleared", extra={"fid": fid, "event": event.event})
			return None

		user = await self.repository.set_notification_details(fid, NotificationDetails(url=details.url, token=details.token))
		if isinstance(event, FrameAdded):
			title, body = "Welcome to Frame", "This frame has been added."
		else:
			title, body = "Notifications enabled", "Notifications have been enabled."
		await notify_users(
			self.queue,
			[Recipient(token=details.token, url=details.url, fid=fid)],
			title=title,
			body=body,
			target_url=self.app_url,
		)
		_LOG.info("preferences.notifications_stored", extra={"fid": fid, "event": event.event})
		return user

	async def set_notification_type(self, fid: int, notification_type: NotificationType | str) -> User:
		mode = NotificationType(notification_type)
		user = await self.repository.set_notification_type(fid, mode)
		_LOG.info("preferences.notification_type_set", extra={"fid": fid, "notification_type": mode.value})
		return user


__all__ = [
	"FrameAdded",
	"FrameEvent",
	"FrameNotificationDetails",
	"FrameRemoved",
	"NotificationPreferences",
	"NotificationsDisabled",
	"NotificationsEnabled",
	"parse_frame_event",
]
