"""Polls the chain for YoEvent logs and feeds them to the onchain-message queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional

from redis.asyncio import Redis
from web3 import AsyncWeb3, Web3

from yobox.domain.onchain.decoder import YO_EVENT_TOPIC, enqueue_onchain_message, parse_raw_log
from yobox.infra.queue import JobQueue
from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class EventListener:
	"""``eth_getLogs`` polling over bounded block ranges behind a confirmation depth.

	The next block to scan is kept in Redis under ``cursor_key`` so a restarted
	listener resumes where it stopped. Re-scanning a range is harmless because
	jobs are keyed by ``{tx}-{logIndex}``.
	"""

	def __init__(
		self,
		web3: AsyncWeb3,
		queue: JobQueue,
		redis: Redis,
		*,
		token_address: str,
		poll_interval: float = 2.0,
		confirmations: int = 0,
		max_block_range: int = 500,
		start_block: Optional[int] = None,
		cursor_key: str = "yobox:listener:yo_event:next_block",
	) -> None:
		self.web3 = web3
		self.queue = queue
		self.redis = redis
		self.token_address = Web3.to_checksum_address(token_address)
		self.poll_interval = poll_interval
		self.confirmations = max(0, confirmations)
		self.max_block_range = max(1, max_block_range)
		self.start_block = start_block
		self.cursor_key = cursor_key
		self._running = False

	def stop(self) -> None:
		self._running = False

	async def run_forever(self) -> None:
		self._running = True
		_LOG.info("listener.started", extra={"token_address": self.token_address})
		while self._running:
			try:
				scanned = await self.poll_once()
			except Exception:  # noqa: BLE001 - RPC hiccups must not kill the listener
				_LOG.exception("listener.poll_failed")
				scanned = 0
			if scanned == 0:
				await asyncio.sleep(self.poll_interval)
		_LOG.info("listener.stopped")

	async def poll_once(self) -> int:
		"""Scan the next block range; returns the number of blocks covered."""
		latest = await self.web3.eth.block_number - self.confirmations
		if latest < 0:
			return 0
		from_block = await self._load_cursor()
		if from_block is None:
			from_block = self.start_block if self.start_block is not None else latest
		if from_block > latest:
			return 0
		to_block = min(latest, from_block + self.max_block_range - 1)

		logs = await self.web3.eth.get_logs(
			{
				"fromBlock": from_block,
				"toBlock": to_block,
				"address": self.token_address,
				"topics": [YO_EVENT_TOPIC],
			}
		)
		await self.on_logs(logs)
		await self.redis.set(self.cursor_key, to_block + 1)
		obs_metrics.set_listener_block(to_block)
		_LOG.debug("listener.range_scanned", extra={"from_block": from_block, "to_block": to_block, "logs": len(logs)})
		return to_block - from_block + 1

	async def on_logs(self, logs: Iterable[Mapping[str, Any]]) -> int:
		"""Decode and queue each log; returns how many new jobs were added."""
		queued = 0
		for raw in logs:
			obs_metrics.inc_listener_log("seen")
			log = parse_raw_log(raw)
			if await enqueue_onchain_message(self.queue, log) is not None:
				queued += 1
		return queued

	async def _load_cursor(self) -> Optional[int]:
		value = await self.redis.get(self.cursor_key)
		return int(value) if value is not None else None


def create_web3(rpc_url: str) -> AsyncWeb3:
	return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))


__all__ = ["EventListener", "create_web3"]
