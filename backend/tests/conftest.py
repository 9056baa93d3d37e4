import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
TESTS_ROOT = Path(__file__).resolve().parent
for _path in (BACKEND_ROOT, TESTS_ROOT):
	if str(_path) not in sys.path:
		sys.path.insert(0, str(_path))

from factories import ALICE, BOB, FakeClock, FakeIdentityLookup, identity
from yobox.domain.identity.resolver import AddressResolver
from yobox.domain.messaging.repository import InMemoryMessagingRepository
from yobox.workers.runner import build_queues


@pytest_asyncio.fixture
async def fake_redis():
	client = FakeRedis(decode_responses=True)
	try:
		yield client
	finally:
		await client.flushall()
		await client.aclose()


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repo(clock: FakeClock) -> InMemoryMessagingRepository:
	return InMemoryMessagingRepository(clock=clock)


@pytest.fixture
def lookup() -> FakeIdentityLookup:
	return FakeIdentityLookup(
		{
			ALICE: [identity(10, "alice", ALICE)],
			BOB: [identity(20, "bob", BOB)],
		}
	)


@pytest.fixture
def resolver(fake_redis, lookup) -> AddressResolver:
	return AddressResolver(fake_redis, lookup, ttl_seconds=3600)


@pytest.fixture
def queues(fake_redis):
	return build_queues(fake_redis, prefix="test")
