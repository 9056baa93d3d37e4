"""One digest run, for cron setups that do not use the in-process scheduler."""

import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

load_dotenv()

from yobox.container import build_container
from yobox.domain.messaging.models import NotificationType
from yobox.obs import init as obs_init
from yobox.settings import settings


async def main(cadence: str | None, force: bool) -> int:
	container = await build_container(settings)
	try:
		summary = await container.digest().run(
			cadences=[NotificationType(cadence)] if cadence else None,
			force=force,
		)
	finally:
		await container.close()
	print(json.dumps(summary.to_dict()))
	errors = sum(item.errors for item in summary.cadences.values())
	return 1 if errors else 0


if __name__ == "__main__":
	parser = argparse.ArgumentParser(description="Send digest notifications for batched delivery modes")
	parser.add_argument(
		"--cadence",
		choices=[NotificationType.HOURLY.value, NotificationType.SEMI_DAILY.value],
		help="Only run this cadence (default: every cadence due at the current hour)",
	)
	parser.add_argument("--force", action="store_true", help="Ignore the per-hour run lock")
	args = parser.parse_args()
	obs_init()
	sys.exit(asyncio.run(main(args.cadence, args.force)))
