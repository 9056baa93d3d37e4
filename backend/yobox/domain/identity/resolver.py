"""Address -> Farcaster identity resolution with a Redis cache in front of the API."""

from __future__ import annotations

import json
import logging
from typing import Iterable, Optional, Sequence

from redis.asyncio import Redis
from web3 import Web3

from yobox.domain.identity.client import IdentityLookup
from yobox.domain.identity.models import IdentityRecord
from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "farcaster:user:"
DEFAULT_CACHE_TTL_SECONDS = 60 * 60 * 24 * 3


def canonical_address(address: str) -> str:
	return Web3.to_checksum_address(address)


def address_cache_key(address: str) -> str:
	return f"{CACHE_KEY_PREFIX}{canonical_address(address)}"


def fid_cache_key(fid: int) -> str:
	return f"{CACHE_KEY_PREFIX}{fid}"


def select_identity(candidates: Sequence[IdentityRecord], hint_fid: Optional[int] = None) -> Optional[IdentityRecord]:
	"""Pick the account behind an address.

	A hinted fid wins when it is among the candidates; otherwise the lowest fid
	is used so the choice does not depend on API ordering.
	"""
	if not candidates:
		return None
	if hint_fid is not None:
		for candidate in candidates:
			if candidate.fid == hint_fid:
				return candidate
	return min(candidates, key=lambda candidate: candidate.fid)


class AddressResolver:
	"""Resolves addresses and fids through ``farcaster:user:*`` cache entries.

	A cached address holds the JSON list of accounts that verified it. Addresses
	with no account are not cached, so a later verification is seen on the next
	lookup.
	"""

	def __init__(self, redis: Redis, lookup: IdentityLookup, *, ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS) -> None:
		self.redis = redis
		self.lookup = lookup
		self.ttl_seconds = ttl_seconds

	async def resolve_addresses(self, addresses: Iterable[str]) -> dict[str, list[IdentityRecord]]:
		"""Map each (checksummed) address to the accounts that verified it."""
		wanted = list(dict.fromkeys(canonical_address(address) for address in addresses))
		if not wanted:
			return {}

		cached = await self.redis.mget([address_cache_key(address) for address in wanted])
		resolved: dict[str, list[IdentityRecord]] = {}
		misses: list[str] = []
		for address, raw in zip(wanted, cached):
			if raw is None:
				misses.append(address)
				continue
			resolved[address] = [IdentityRecord.model_validate(item) for item in json.loads(raw)]
		obs_metrics.inc_identity_cache("address", "hit", len(resolved))

		if misses:
			obs_metrics.inc_identity_cache("address", "miss", len(misses))
			fetched = await self.lookup.fetch_by_addresses(misses)
			by_address = {address.lower(): users for address, users in fetched.items()}
			entries: dict[str, str] = {}
			for address in misses:
				users = list(by_address.get(address.lower(), []))
				resolved[address] = users
				if users:
					entries[address_cache_key(address)] = json.dumps([user.model_dump() for user in users])
			await self._write(entries)
			_LOG.info(
				"identity.addresses_fetched",
				extra={"requested": len(misses), "found": sum(1 for address in misses if resolved[address])},
			)
		return resolved

	async def get_users_by_fids(self, fids: Iterable[int]) -> dict[int, IdentityRecord]:
		"""Accounts by fid; fids the API does not know are left out."""
		wanted = list(dict.fromkeys(int(fid) for fid in fids))
		if not wanted:
			return {}

		cached = await self.redis.mget([fid_cache_key(fid) for fid in wanted])
		users: dict[int, IdentityRecord] = {}
		misses: list[int] = []
		for fid, raw in zip(wanted, cached):
			if raw is None:
				misses.append(fid)
			else:
				users[fid] = IdentityRecord.model_validate_json(raw)
		obs_metrics.inc_identity_cache("fid", "hit", len(users))

		if misses:
			obs_metrics.inc_identity_cache("fid", "miss", len(misses))
			fetched = await self.lookup.fetch_by_ids(misses)
			entries: dict[str, str] = {}
			for user in fetched:
				users[user.fid] = user
				entries[fid_cache_key(user.fid)] = user.model_dump_json()
			await self._write(entries)
		return users

	async def _write(self, entries: dict[str, str]) -> None:
		if not entries:
			return
		async with self.redis.pipeline(transaction=False) as pipe:
			pipe.mset(entries)
			for key in entries:
				pipe.expire(key, self.ttl_seconds)
			await pipe.execute()


async def purge_cached_users(redis: Redis, pattern: str = f"{CACHE_KEY_PREFIX}*", *, batch_size: int = 500) -> int:
	"""Delete cached identity entries matching ``pattern``; returns the count removed."""
	removed = 0
	batch: list[str] = []
	async for key in redis.scan_iter(match=pattern, count=batch_size):
		batch.append(key)
		if len(batch) >= batch_size:
			removed += await redis.delete(*batch)
			batch = []
	if batch:
		removed += await redis.delete(*batch)
	_LOG.info("identity.cache_purged", extra={"pattern": pattern, "removed": removed})
	return removed


__all__ = [
	"AddressResolver",
	"address_cache_key",
	"canonical_address",
	"fid_cache_key",
	"purge_cached_users",
	"select_identity",
]
