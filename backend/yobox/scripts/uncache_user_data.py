"""Drop cached Farcaster identity entries."""

import argparse
import asyncio

from dotenv import load_dotenv

load_dotenv()

from yobox.domain.identity.resolver import CACHE_KEY_PREFIX, purge_cached_users
from yobox.infra.redis import create_redis_client
from yobox.obs import init as obs_init
from yobox.settings import settings


async def main(pattern: str) -> int:
	redis = create_redis_client(settings.redis_url, connect_timeout=settings.redis_connect_timeout_seconds)
	try:
		removed = await purge_cached_users(redis, pattern)
	finally:
		await redis.aclose()
	print(f"Deleted {removed} keys matching {pattern}")
	return removed


if __name__ == "__main__":
	parser = argparse.ArgumentParser(description=__doc__)
	parser.add_argument("--pattern", default=f"{CACHE_KEY_PREFIX}*")
	args = parser.parse_args()
	obs_init()
	asyncio.run(main(args.pattern))
