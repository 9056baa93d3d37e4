from yobox.domain.messaging.models import (
	InboundMessage,
	Message,
	NotificationDetails,
	NotificationType,
	OnchainRecordResult,
	OnchainRecordStatus,
	User,
)
from yobox.domain.messaging.repository import (
	InMemoryMessagingRepository,
	MessagingRepository,
	PostgresMessagingRepository,
)

__all__ = [
	"InMemoryMessagingRepository",
	"InboundMessage",
	"Message",
	"MessagingRepository",
	"NotificationDetails",
	"NotificationType",
	"OnchainRecordResult",
	"OnchainRecordStatus",
	"PostgresMessagingRepository",
	"User",
]
