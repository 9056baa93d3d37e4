"""YoEvent log decoding and the hand-off into the onchain-message queue."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from web3 import Web3

from yobox.domain.jobs import OnchainMessageJobData
from yobox.infra.queue import Job, JobQueue
from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

YO_EVENT_SIGNATURE = "YoEvent(address,address,uint256,bytes)"


def _hex_prefixed(value: Any) -> str:
	raw = value.hex() if hasattr(value, "hex") else str(value)
	if raw.startswith("0x"):
		return raw
	return f"0x{raw}"


YO_EVENT_TOPIC = _hex_prefixed(Web3.keccak(text=YO_EVENT_SIGNATURE))


@dataclass(frozen=True)
class YoLog:
	"""A YoEvent log; fields the log did not carry are None."""

	transaction_hash: Optional[str]
	log_index: Optional[int]
	from_address: Optional[str]
	to_address: Optional[str]
	amount: Optional[int]
	data: Optional[str]
	block_number: Optional[int] = None

	@property
	def job_id(self) -> str:
		return f"{self.transaction_hash}-{self.log_index}"


class MessageHint(BaseModel):
	"""Sender/recipient fids the sending client attached to the transfer."""

	model_config = ConfigDict(populate_by_name=True, extra="ignore")

	from_fid: Optional[int] = Field(default=None, alias="fromFid")
	to_fid: Optional[int] = Field(default=None, alias="toFid")


def _optional_hex(value: Any) -> Optional[str]:
	return _hex_prefixed(value) if value is not None else None


def _topic_to_address(topic: Any) -> str:
	hex_topic = _hex_prefixed(topic)
	return Web3.to_checksum_address(f"0x{hex_topic[-40:]}")


def _topic_to_int(topic: Any) -> int:
	return int(_hex_prefixed(topic), 16)


def _to_bytes(value: Any) -> bytes:
	if isinstance(value, (bytes, bytearray)):
		return bytes(value)
	text = str(value)
	return bytes.fromhex(text[2:] if text.startswith("0x") else text)


def parse_raw_log(raw: Mapping[str, Any]) -> YoLog:
	"""Decode an ``eth_getLogs`` entry; indexed args come from topics, ``data`` is ABI ``bytes``."""
	topics: Sequence[Any] = raw.get("topics") or []
	data: Optional[str] = None
	raw_data = raw.get("data")
	if raw_data is not None:
		try:
			(payload,) = decode(["bytes"], _to_bytes(raw_data))
			data = _hex_prefixed(payload)
		except (DecodingError, ValueError):
			_LOG.info("onchain_decoder.undecodable_data", extra={"transaction_hash": _optional_hex(raw.get("transactionHash"))})
	block_number = raw.get("blockNumber")
	log_index = raw.get("logIndex")
	return YoLog(
		transaction_hash=_optional_hex(raw.get("transactionHash")),
		log_index=int(log_index) if log_index is not None else None,
		from_address=_topic_to_address(topics[1]) if len(topics) > 1 else None,
		to_address=_topic_to_address(topics[2]) if len(topics) > 2 else None,
		amount=_topic_to_int(topics[3]) if len(topics) > 3 else None,
		data=data,
		block_number=int(block_number) if block_number is not None else None,
	)


def build_onchain_job(log: YoLog) -> Optional[OnchainMessageJobData]:
	"""Job payload for a well-formed log, or None when a required field is missing."""
	required = (log.transaction_hash, log.log_index, log.from_address, log.to_address, log.amount, log.data)
	if any(value is None for value in required):
		_LOG.warning(
			"onchain_decoder.invalid_event",
			extra={"transaction_hash": log.transaction_hash, "log_index": log.log_index},
		)
		return None
	return OnchainMessageJobData(
		transaction_hash=log.transaction_hash,
		from_address=log.from_address,
		to_address=log.to_address,
		amount=str(log.amount),
		data=log.data,
	)


async def enqueue_onchain_message(queue: JobQueue, log: YoLog) -> Optional[Job]:
	"""Queue a log under ``{tx}-{logIndex}``; redelivering the same log is a no-op."""
	payload = build_onchain_job(log)
	if payload is None:
		obs_metrics.inc_listener_log("rejected")
		return None
	job = await queue.add(log.transaction_hash, payload.model_dump(mode="json"), job_id=log.job_id)
	if job is None:
		obs_metrics.inc_listener_log("duplicate")
		return None
	obs_metrics.inc_listener_log("queued")
	_LOG.info(
		"onchain_decoder.queued",
		extra={"transaction_hash": log.transaction_hash, "job_id": job.id, "amount": payload.amount},
	)
	return job


def decode_message_hint(data: Optional[str]) -> Optional[MessageHint]:
	"""Read the optional ``{fromFid, toFid}`` JSON carried in the transfer's data bytes."""
	if not data or data == "0x":
		return None
	try:
		return MessageHint.model_validate_json(_to_bytes(data).decode("utf-8"))
	except (ValueError, ValidationError) as exc:
		# UnicodeDecodeError is a ValueError
		_LOG.info("onchain_decoder.invalid_hint", extra={"data": data[:130], "error": type(exc).__name__})
		return None


def encode_message_hint(from_fid: int, to_fid: int) -> str:
	"""Hex data bytes a client attaches to a transfer; the inverse of ``decode_message_hint``."""
	return _hex_prefixed(json.dumps({"fromFid": from_fid, "toFid": to_fid}, separators=(",", ":")).encode("utf-8"))


__all__ = [
	"MessageHint",
	"YO_EVENT_SIGNATURE",
	"YO_EVENT_TOPIC",
	"YoLog",
	"build_onchain_job",
	"decode_message_hint",
	"encode_message_hint",
	"enqueue_onchain_message",
	"parse_raw_log",
]
