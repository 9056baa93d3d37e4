from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from yobox.api import ops
from yobox.container import build_container
from yobox.domain.onchain.listener import EventListener, create_web3
from yobox.infra.scheduler import PipelineScheduler
from yobox.obs import init as obs_init
from yobox.settings import settings
from yobox.workers.runner import build_workers, spawn_workers

_SHUTDOWN_GRACE_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
	container = await build_container(settings)
	app.state.container = container
	worker_tasks: list[asyncio.Task] = []
	worker_instances: list[object] = []
	scheduler: PipelineScheduler | None = None
	if settings.workers_enabled:
		workers = build_workers(container)
		worker_instances.extend(workers)
		worker_tasks.extend(spawn_workers(workers))
	if settings.listener_enabled:
		listener = EventListener(
			create_web3(settings.base_rpc_url),
			container.queues.onchain,
			container.redis.queue,
			token_address=settings.yo_token_address,
			poll_interval=settings.listener_poll_interval_seconds,
			confirmations=settings.listener_confirmations,
			max_block_range=settings.listener_max_block_range,
			start_block=settings.listener_start_block,
			cursor_key=f"{settings.queue_prefix}:listener:yo_event:next_block",
		)
		worker_instances.append(listener)
		worker_tasks.append(asyncio.create_task(listener.run_forever(), name="onchain-listener"))
	if settings.scheduler_enabled:
		scheduler = PipelineScheduler()
		scheduler.start()
		scheduler.schedule_hourly("digest-notifications", container.digest().run)
		app.state.scheduler = scheduler
	app.state.workers = worker_instances
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		for instance in worker_instances:
			stop = getattr(instance, "stop", None)
			if callable(stop):
				stop()
		if worker_tasks:
			# Let in-flight jobs finish; unfinished ones are reclaimed by the next consumer.
			_done, pending = await asyncio.wait(worker_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
			for task in pending:
				task.cancel()
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await container.close()


obs_init()
app = FastAPI(title="yobox pipeline", lifespan=lifespan)
app.include_router(ops.router, tags=["ops"])
