"""Chain listener process: YoEvent logs -> onchain-message queue."""

import asyncio
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

from yobox.domain.onchain.listener import EventListener, create_web3
from yobox.infra.redis import RedisClients
from yobox.obs import init as obs_init
from yobox.settings import settings
from yobox.workers.runner import build_queues


async def main() -> None:
	redis_clients = RedisClients.from_settings(settings)
	queues = build_queues(redis_clients.queue, prefix=settings.queue_prefix)
	listener = EventListener(
		create_web3(settings.base_rpc_url),
		queues.onchain,
		redis_clients.queue,
		token_address=settings.yo_token_address,
		poll_interval=settings.listener_poll_interval_seconds,
		confirmations=settings.listener_confirmations,
		max_block_range=settings.listener_max_block_range,
		start_block=settings.listener_start_block,
		cursor_key=f"{settings.queue_prefix}:listener:yo_event:next_block",
	)
	if sys.platform != "win32":
		loop = asyncio.get_running_loop()
		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.add_signal_handler(sig, listener.stop)
	try:
		await listener.run_forever()
	finally:
		await redis_clients.close()


if __name__ == "__main__":
	obs_init()
	asyncio.run(main())
