"""User/message persistence used by the onchain worker, preferences and the digest."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Protocol, Sequence

import asyncpg

from yobox.domain.messaging.models import (
	InboundMessage,
	Message,
	NotificationDetails,
	NotificationType,
	ONCHAIN_MESSAGE_TEXT,
	OnchainRecordResult,
	OnchainRecordStatus,
	User,
)

DEFAULT_COOLDOWN = timedelta(hours=24)

_USER_COLUMNS = "id, fid, notification_type, notification_url, notification_token, created_at"
_MESSAGE_COLUMNS = "id, from_user_id, to_user_id, message, created_at, is_onchain, transaction_hash"


def pair_lock_key(user_a: str, user_b: str) -> int:
	"""Signed 64-bit advisory lock key for an unordered user pair."""
	first, second = sorted((str(user_a), str(user_b)))
	digest = hashlib.blake2b(f"{first}:{second}".encode("utf-8"), digest_size=8).digest()
	return int.from_bytes(digest, "big", signed=True)


class MessagingRepository(Protocol):
	async def get_or_create_user(self, fid: int) -> User:
		...

	async def get_user_by_fid(self, fid: int) -> Optional[User]:
		...

	async def record_onchain_message(
		self,
		from_fid: int,
		to_fid: int,
		transaction_hash: str,
		*,
		cooldown: timedelta = DEFAULT_COOLDOWN,
	) -> OnchainRecordResult:
		...

	async def set_notification_details(self, fid: int, details: NotificationDetails) -> User:
		...

	async def clear_notification_details(self, fid: int) -> None:
		...

	async def clear_notification_tokens(self, tokens: Iterable[str]) -> int:
		...

	async def set_notification_type(self, fid: int, notification_type: NotificationType) -> User:
		...

	async def list_digest_subscribers(self, notification_type: NotificationType) -> list[User]:
		...

	async def list_unseen_inbound(self, user_id: str, since: datetime) -> list[InboundMessage]:
		...


class PostgresMessagingRepository:
	"""asyncpg implementation over the ``users`` and ``messages`` tables."""

	def __init__(self, pool: asyncpg.Pool) -> None:
		self.pool = pool

	async def get_or_create_user(self, fid: int) -> User:
		async with self.pool.acquire() as conn:
			return await self._upsert_user(conn, fid)

	async def get_user_by_fid(self, fid: int) -> Optional[User]:
		record = await self.pool.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE fid = $1", fid)
		return _user_from_record(record) if record else None

	async def record_onchain_message(
		self,
		from_fid: int,
		to_fid: int,
		transaction_hash: str,
		*,
		cooldown: timedelta = DEFAULT_COOLDOWN,
	) -> OnchainRecordResult:
		async with self.pool.acquire() as conn:
			async with conn.transaction():
				# Upsert in fid order so two workers touching the same pair lock rows identically.
				users = {fid: await self._upsert_user(conn, fid) for fid in sorted({from_fid, to_fid})}
				sender, recipient = users[from_fid], users[to_fid]
				await conn.execute("SELECT pg_advisory_xact_lock($1)", pair_lock_key(sender.id, recipient.id))

				duplicate = await conn.fetchval(
					"""
					SELECT 1 FROM messages
					WHERE transaction_hash = $1 AND from_user_id = $2 AND to_user_id = $3
					LIMIT 1
					""",
					transaction_hash,
					sender.id,
					recipient.id,
				)
				if duplicate:
					return OnchainRecordResult(OnchainRecordStatus.DUPLICATE, sender, recipient)

				last_sent = await conn.fetchval(
					"""
					SELECT MAX(created_at) FROM messages
					WHERE from_user_id = $1 AND to_user_id = $2 AND created_at > now() - $3::interval
					""",
					sender.id,
					recipient.id,
					cooldown,
				)
				if last_sent is not None:
					return OnchainRecordResult(
						OnchainRecordStatus.COOLDOWN, sender, recipient, last_message_at=last_sent
					)

				record = await conn.fetchrow(
					f"""
					INSERT INTO messages (from_user_id, to_user_id, message, is_onchain, transaction_hash)
					VALUES ($1, $2, $3, TRUE, $4)
					RETURNING {_MESSAGE_COLUMNS}
					""",
					sender.id,
					recipient.id,
					ONCHAIN_MESSAGE_TEXT,
					transaction_hash,
				)
				assert record is not None
				return OnchainRecordResult(
					OnchainRecordStatus.CREATED, sender, recipient, message=_message_from_record(record)
				)

	async def set_notification_details(self, fid: int, details: NotificationDetails) -> User:
		record = await self.pool.fetchrow(
			f"""
			INSERT INTO users (fid, notification_url, notification_token)
			VALUES ($1, $2, $3)
			ON CONFLICT (fid) DO UPDATE SET
				notification_url = EXCLUDED.notification_url,
				notification_token = EXCLUDED.notification_token,
				updated_at = CURRENT_TIMESTAMP
			RETURNING {_USER_COLUMNS}
			""",
			fid,
			details.url,
			details.token,
		)
		assert record is not None
		return _user_from_record(record)

	async def clear_notification_details(self, fid: int) -> None:
		await self.pool.execute(
			"""
			UPDATE users
			SET notification_url = NULL, notification_token = NULL, updated_at = CURRENT_TIMESTAMP
			WHERE fid = $1
			""",
			fid,
		)

	async def clear_notification_tokens(self, tokens: Iterable[str]) -> int:
		values = list(dict.fromkeys(tokens))
		if not values:
			return 0
		result = await self.pool.execute(
			"""
			UPDATE users
			SET notification_url = NULL, notification_token = NULL, updated_at = CURRENT_TIMESTAMP
			WHERE notification_token = ANY($1::varchar[])
			""",
			values,
		)
		# asyncpg returns the command tag, e.g. "UPDATE 3"
		return int(result.split()[-1]) if result else 0

	async def set_notification_type(self, fid: int, notification_type: NotificationType) -> User:
		record = await self.pool.fetchrow(
			f"""
			INSERT INTO users (fid, notification_type)
			VALUES ($1, $2::notification_type)
			ON CONFLICT (fid) DO UPDATE SET
				notification_type = EXCLUDED.notification_type,
				updated_at = CURRENT_TIMESTAMP
			RETURNING {_USER_COLUMNS}
			""",
			fid,
			notification_type.value,
		)
		assert record is not None
		return _user_from_record(record)

	async def list_digest_subscribers(self, notification_type: NotificationType) -> list[User]:
		records = await self.pool.fetch(
			f"""
			SELECT {_USER_COLUMNS} FROM users
			WHERE notification_type = $1::notification_type
				AND notification_url IS NOT NULL
				AND notification_token IS NOT NULL
			ORDER BY fid
			""",
			notification_type.value,
		)
		return [_user_from_record(record) for record in records]

	async def list_unseen_inbound(self, user_id: str, since: datetime) -> list[InboundMessage]:
		# created_at holds session-local time; the timestamptz cast reads it in that same zone.
		records = await self.pool.fetch(
			"""
			SELECT m.id, m.from_user_id, sender.fid AS from_fid, m.created_at
			FROM messages m
			JOIN users sender ON sender.id = m.from_user_id
			WHERE m.to_user_id = $1
				AND m.created_at > $2::timestamptz
				AND m.created_at > COALESCE(
					(SELECT MAX(created_at) FROM messages WHERE from_user_id = $1),
					'-infinity'::timestamp
				)
			ORDER BY m.created_at DESC
			""",
			user_id,
			since,
		)
		return [
			InboundMessage(
				id=str(record["id"]),
				from_user_id=str(record["from_user_id"]),
				from_fid=record["from_fid"],
				created_at=record["created_at"],
			)
			for record in records
		]

	async def _upsert_user(self, conn: asyncpg.Connection, fid: int) -> User:
		# DO UPDATE (not DO NOTHING) so RETURNING yields the existing row too
		record = await conn.fetchrow(
			f"""
			INSERT INTO users (fid) VALUES ($1)
			ON CONFLICT (fid) DO UPDATE SET fid = EXCLUDED.fid
			RETURNING {_USER_COLUMNS}
			""",
			fid,
		)
		assert record is not None
		return _user_from_record(record)


def _user_from_record(record: asyncpg.Record) -> User:
	return User(
		id=str(record["id"]),
		fid=record["fid"],
		notification_type=NotificationType(record["notification_type"]),
		notification_url=record["notification_url"],
		notification_token=record["notification_token"],
		created_at=record["created_at"],
	)


def _message_from_record(record: asyncpg.Record) -> Message:
	return Message(
		id=str(record["id"]),
		from_user_id=str(record["from_user_id"]),
		to_user_id=str(record["to_user_id"]),
		message=record["message"],
		created_at=record["created_at"],
		is_onchain=bool(record["is_onchain"]),
		transaction_hash=record["transaction_hash"],
	)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class InMemoryMessagingRepository:
	"""Dict-backed repository for tests and local runs."""

	def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self.clock = clock
		self.users: dict[int, User] = {}
		self.messages: list[Message] = []

	async def get_or_create_user(self, fid: int) -> User:
		user = self.users.get(fid)
		if user is None:
			user = User(id=str(uuid.uuid4()), fid=fid, created_at=self.clock())
			self.users[fid] = user
		return user

	async def get_user_by_fid(self, fid: int) -> Optional[User]:
		return self.users.get(fid)

	def add_message(
		self,
		sender: User,
		recipient: User,
		*,
		created_at: Optional[datetime] = None,
		text: str = ONCHAIN_MESSAGE_TEXT,
		is_onchain: bool = False,
		transaction_hash: Optional[str] = None,
	) -> Message:
		message = Message(
			id=str(uuid.uuid4()),
			from_user_id=sender.id,
			to_user_id=recipient.id,
			message=text,
			created_at=created_at or self.clock(),
			is_onchain=is_onchain,
			transaction_hash=transaction_hash,
		)
		self.messages.append(message)
		return message

	async def record_onchain_message(
		self,
		from_fid: int,
		to_fid: int,
		transaction_hash: str,
		*,
		cooldown: timedelta = DEFAULT_COOLDOWN,
	) -> OnchainRecordResult:
		# No await between the checks and the insert, so this is atomic on the event loop.
		sender = await self.get_or_create_user(from_fid)
		recipient = await self.get_or_create_user(to_fid)
		sent = [m for m in self.messages if m.from_user_id == sender.id and m.to_user_id == recipient.id]
		if any(m.transaction_hash == transaction_hash for m in sent):
			return OnchainRecordResult(OnchainRecordStatus.DUPLICATE, sender, recipient)
		now = self.clock()
		last_sent = max((m.created_at for m in sent), default=None)
		if last_sent is not None and last_sent > now - cooldown:
			return OnchainRecordResult(OnchainRecordStatus.COOLDOWN, sender, recipient, last_message_at=last_sent)
		message = self.add_message(
			sender, recipient, created_at=now, is_onchain=True, transaction_hash=transaction_hash
		)
		return OnchainRecordResult(OnchainRecordStatus.CREATED, sender, recipient, message=message)

	async def set_notification_details(self, fid: int, details: NotificationDetails) -> User:
		user = await self.get_or_create_user(fid)
		user.notification_url = details.url
		user.notification_token = details.token
		return user

	async def clear_notification_details(self, fid: int) -> None:
		user = self.users.get(fid)
		if user is not None:
			user.notification_url = None
			user.notification_token = None

	async def clear_notification_tokens(self, tokens: Iterable[str]) -> int:
		wanted = set(tokens)
		cleared = 0
		for user in self.users.values():
			if user.notification_token and user.notification_token in wanted:
				user.notification_url = None
				user.notification_token = None
				cleared += 1
		return cleared

	async def set_notification_type(self, fid: int, notification_type: NotificationType) -> User:
		user = await self.get_or_create_user(fid)
		user.notification_type = notification_type
		return user

	async def list_digest_subscribers(self, notification_type: NotificationType) -> list[User]:
		return sorted(
			(
				user
				for user in self.users.values()
				if user.notification_type is notification_type and user.notification_details is not None
			),
			key=lambda user: user.fid,
		)

	async def list_unseen_inbound(self, user_id: str, since: datetime) -> list[InboundMessage]:
		last_outbound = max((m.created_at for m in self.messages if m.from_user_id == user_id), default=None)
		fids = {user.id: user.fid for user in self.users.values()}
		inbound = [
			m
			for m in self.messages
			if m.to_user_id == user_id
			and m.created_at > since
			and (last_outbound is None or m.created_at > last_outbound)
		]
		inbound.sort(key=lambda m: m.created_at, reverse=True)
		return [
			InboundMessage(id=m.id, from_user_id=m.from_user_id, from_fid=fids[m.from_user_id], created_at=m.created_at)
			for m in inbound
		]

	def messages_between(self, sender: User, recipient: User) -> Sequence[Message]:
		return [m for m in self.messages if m.from_user_id == sender.id and m.to_user_id == recipient.id]


__all__ = [
	"DEFAULT_COOLDOWN",
	"InMemoryMessagingRepository",
	"MessagingRepository",
	"PostgresMessagingRepository",
	"pair_lock_key",
]
