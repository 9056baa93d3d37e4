"""Shared fakes and builders for the test suite."""

from datetime import datetime, timedelta
from typing import Sequence

from yobox.domain.identity.models import IdentityRecord

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"
TX_HASH = "0x" + "ab" * 32


class FakeClock:
	def __init__(self, start: datetime) -> None:
		self.now = start

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **delta: float) -> None:
		self.now = self.now + timedelta(**delta)


class FakeIdentityLookup:
	"""Serves identities from dicts and records every call."""

	def __init__(self, by_address: dict[str, list[IdentityRecord]] | None = None) -> None:
		self.by_address = {address.lower(): users for address, users in (by_address or {}).items()}
		self.by_fid: dict[int, IdentityRecord] = {}
		for users in self.by_address.values():
			for user in users:
				self.by_fid[user.fid] = user
		self.address_calls: list[list[str]] = []
		self.fid_calls: list[list[int]] = []
		self.fail_with: Exception | None = None

	async def fetch_by_addresses(self, addresses: Sequence[str]) -> dict[str, list[IdentityRecord]]:
		self.address_calls.append(list(addresses))
		if self.fail_with is not None:
			raise self.fail_with
		return {
			address.lower(): self.by_address[address.lower()]
			for address in addresses
			if address.lower() in self.by_address
		}

	async def fetch_by_ids(self, fids: Sequence[int]) -> list[IdentityRecord]:
		self.fid_calls.append(list(fids))
		if self.fail_with is not None:
			raise self.fail_with
		return [self.by_fid[fid] for fid in fids if fid in self.by_fid]


def identity(fid: int, username: str | None = None, *addresses: str) -> IdentityRecord:
	return IdentityRecord(fid=fid, username=username, verified_addresses=list(addresses))
