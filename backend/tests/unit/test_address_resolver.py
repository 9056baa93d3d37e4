import pytest

from factories import ALICE, BOB, CAROL, identity
from yobox.domain.errors import IdentityLookupError
from yobox.domain.identity.resolver import address_cache_key, fid_cache_key, purge_cached_users, select_identity


@pytest.mark.asyncio
async def test_empty_input_makes_no_lookup(resolver, lookup):
	assert await resolver.resolve_addresses([]) == {}
	assert lookup.address_calls == []


@pytest.mark.asyncio
async def test_misses_are_batched_into_one_lookup(resolver, lookup):
	resolved = await resolver.resolve_addresses([ALICE, BOB, ALICE.lower()])

	assert [user.fid for user in resolved[ALICE]] == [10]
	assert [user.fid for user in resolved[BOB]] == [20]
	assert lookup.address_calls == [[ALICE, BOB]]


@pytest.mark.asyncio
async def test_second_resolve_within_ttl_hits_cache(resolver, lookup, fake_redis):
	await resolver.resolve_addresses([ALICE])
	again = await resolver.resolve_addresses([ALICE])

	assert [user.username for user in again[ALICE]] == ["alice"]
	assert len(lookup.address_calls) == 1
	ttl = await fake_redis.ttl(address_cache_key(ALICE))
	assert 0 < ttl <= 3600


@pytest.mark.asyncio
async def test_unknown_address_is_looked_up_again(resolver, lookup, fake_redis):
	first = await resolver.resolve_addresses([CAROL])
	assert first == {CAROL: []}
	assert await fake_redis.get(address_cache_key(CAROL)) is None

	lookup.by_address[CAROL.lower()] = [identity(30, "carol", CAROL)]
	second = await resolver.resolve_addresses([CAROL])

	assert [user.fid for user in second[CAROL]] == [30]
	assert lookup.address_calls == [[CAROL], [CAROL]]
	assert await fake_redis.get(address_cache_key(CAROL)) is not None


@pytest.mark.asyncio
async def test_only_missing_addresses_are_fetched(resolver, lookup):
	await resolver.resolve_addresses([ALICE])
	await resolver.resolve_addresses([ALICE, BOB])

	assert lookup.address_calls == [[ALICE], [BOB]]


@pytest.mark.asyncio
async def test_lookup_failure_propagates_and_caches_nothing(resolver, lookup, fake_redis):
	lookup.fail_with = IdentityLookupError("boom", status_code=500)

	with pytest.raises(IdentityLookupError):
		await resolver.resolve_addresses([ALICE])
	assert await fake_redis.get(address_cache_key(ALICE)) is None


@pytest.mark.asyncio
async def test_users_by_fid_are_cached_per_fid(resolver, lookup, fake_redis):
	users = await resolver.get_users_by_fids([10, 99])
	again = await resolver.get_users_by_fids([10])

	assert set(users) == {10}
	assert again[10].username == "alice"
	assert lookup.fid_calls == [[10, 99]]
	assert await fake_redis.exists(fid_cache_key(10))


@pytest.mark.asyncio
async def test_purge_removes_only_identity_keys(resolver, fake_redis):
	await resolver.resolve_addresses([ALICE, BOB])
	await resolver.get_users_by_fids([10])
	await fake_redis.set("unrelated", "1")

	removed = await purge_cached_users(fake_redis, batch_size=2)

	assert removed == 3
	assert await fake_redis.get("unrelated") == "1"


def test_select_identity_prefers_hint_then_lowest_fid():
	candidates = [identity(30, "c"), identity(7, "a"), identity(12, "b")]

	assert select_identity(candidates, 12).fid == 12
	assert select_identity(candidates, None).fid == 7
	assert select_identity(candidates, 999).fid == 7
	assert select_identity([], 12) is None
