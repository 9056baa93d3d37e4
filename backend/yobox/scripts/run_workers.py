"""Worker process: consumes both queues and, optionally, runs the digest schedule."""

import asyncio
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

from yobox.container import build_container
from yobox.infra.scheduler import PipelineScheduler
from yobox.obs import init as obs_init
from yobox.obs.logging import get_logger
from yobox.settings import settings
from yobox.workers.runner import build_workers, spawn_workers

_LOG = get_logger("yobox.scripts.run_workers")


async def main() -> None:
	container = await build_container(settings)
	workers = build_workers(container)
	scheduler: PipelineScheduler | None = None
	if settings.scheduler_enabled:
		scheduler = PipelineScheduler()
		scheduler.start()
		scheduler.schedule_hourly("digest-notifications", container.digest().run)

	loop = asyncio.get_running_loop()
	if sys.platform != "win32":
		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.add_signal_handler(sig, lambda: [worker.stop() for worker in workers])

	tasks = spawn_workers(workers)
	_LOG.info("workers.started", extra={"queues": [worker.queue.name for worker in workers]})
	try:
		await asyncio.gather(*tasks)
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await container.close()
		_LOG.info("workers.stopped")


if __name__ == "__main__":
	obs_init()
	asyncio.run(main())
