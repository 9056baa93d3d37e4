"""HTTP client for the Neynar Farcaster user API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol, Sequence

import httpx

from yobox.domain.errors import IdentityLookupError
from yobox.domain.identity.models import IdentityRecord

_LOG = logging.getLogger(__name__)

_MAX_FIDS_PER_CALL = 100
_MAX_ADDRESSES_PER_CALL = 350


class IdentityLookup(Protocol):
	"""External identity lookups; the resolver caches in front of these."""

	async def fetch_by_addresses(self, addresses: Sequence[str]) -> Mapping[str, list[IdentityRecord]]:
		...

	async def fetch_by_ids(self, fids: Sequence[int]) -> list[IdentityRecord]:
		...


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
	for start in range(0, len(items), size):
		yield items[start : start + size]


@dataclass
class NeynarClient:
	"""Bulk user lookups by verified address and by fid."""

	http: httpx.AsyncClient
	api_key: str
	base_url: str = "https://api.neynar.com"
	timeout: float = 10.0

	async def fetch_by_addresses(self, addresses: Sequence[str]) -> dict[str, list[IdentityRecord]]:
		"""Users grouped by the (lower-cased) address they verified."""
		grouped: dict[str, list[IdentityRecord]] = {}
		for chunk in _chunks(list(addresses), _MAX_ADDRESSES_PER_CALL):
			payload = await self._get(
				"/v2/farcaster/user/bulk-by-address",
				params={"addresses": ",".join(chunk), "address_types": "verified_address"},
				missing_ok=True,
			)
			for address, users in (payload or {}).items():
				if not isinstance(users, list):
					continue
				grouped[address.lower()] = [IdentityRecord.model_validate(user) for user in users]
		return grouped

	async def fetch_by_ids(self, fids: Sequence[int]) -> list[IdentityRecord]:
		users: list[IdentityRecord] = []
		for chunk in _chunks(list(fids), _MAX_FIDS_PER_CALL):
			payload = await self._get(
				"/v2/farcaster/user/bulk",
				params={"fids": ",".join(str(fid) for fid in chunk)},
			)
			users.extend(IdentityRecord.model_validate(user) for user in (payload or {}).get("users", []))
		return users

	async def _get(self, path: str, *, params: dict[str, str], missing_ok: bool = False) -> dict | None:
		try:
			response = await self.http.get(
				f"{self.base_url.rstrip('/')}{path}",
				params=params,
				headers={"x-api-key": self.api_key, "accept": "application/json"},
				timeout=self.timeout,
			)
		except httpx.HTTPError as exc:
			raise IdentityLookupError(f"identity lookup failed: {exc}") from exc
		# bulk-by-address answers 404 when none of the addresses has an account
		if missing_ok and response.status_code == 404:
			return None
		if response.status_code != 200:
			_LOG.warning(
				"neynar.request_failed",
				extra={"path": path, "status_code": response.status_code},
			)
			raise IdentityLookupError(
				f"identity lookup failed with status {response.status_code}",
				status_code=response.status_code,
			)
		try:
			return response.json()
		except ValueError as exc:
			raise IdentityLookupError("identity lookup returned invalid JSON") from exc
