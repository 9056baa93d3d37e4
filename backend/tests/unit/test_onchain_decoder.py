import pytest
from eth_abi import encode

from factories import ALICE, BOB, TX_HASH
from yobox.domain.jobs import ONCHAIN_MESSAGE_QUEUE_NAME
from yobox.domain.onchain.decoder import (
	YO_EVENT_TOPIC,
	YoLog,
	build_onchain_job,
	decode_message_hint,
	encode_message_hint,
	enqueue_onchain_message,
	parse_raw_log,
)


def _address_topic(address: str) -> bytes:
	return bytes(12) + bytes.fromhex(address[2:])


def _raw_log(*, amount: int = 5 * 10**18, payload: bytes = b"", log_index: int = 3, topics=None) -> dict:
	return {
		"transactionHash": bytes.fromhex(TX_HASH[2:]),
		"logIndex": log_index,
		"blockNumber": 1234,
		"topics": topics
		if topics is not None
		else [
			bytes.fromhex(YO_EVENT_TOPIC[2:]),
			_address_topic(ALICE),
			_address_topic(BOB),
			amount.to_bytes(32, "big"),
		],
		"data": encode(["bytes"], [payload]),
	}


def _log(**overrides) -> YoLog:
	fields = dict(
		transaction_hash=TX_HASH,
		log_index=0,
		from_address=ALICE,
		to_address=BOB,
		amount=1,
		data="0x",
	)
	fields.update(overrides)
	return YoLog(**fields)


def test_parse_raw_log_reads_indexed_args_and_bytes_payload():
	hint = encode_message_hint(10, 20)
	log = parse_raw_log(_raw_log(payload=bytes.fromhex(hint[2:])))

	assert log.transaction_hash == TX_HASH
	assert log.log_index == 3
	assert log.block_number == 1234
	assert log.from_address == ALICE
	assert log.to_address == BOB
	assert log.amount == 5 * 10**18
	assert log.data == hint
	assert log.job_id == f"{TX_HASH}-3"


def test_parse_raw_log_leaves_missing_topics_empty():
	log = parse_raw_log(_raw_log(topics=[bytes.fromhex(YO_EVENT_TOPIC[2:]), _address_topic(ALICE)]))

	assert log.from_address == ALICE
	assert log.to_address is None
	assert log.amount is None


def test_build_job_keeps_amount_as_decimal_string():
	big = 2**200 + 7
	payload = build_onchain_job(_log(amount=big, data="0xdeadbeef"))

	assert payload is not None
	assert payload.amount == str(big)
	assert payload.data == "0xdeadbeef"
	assert payload.kind == "onchain_message"


@pytest.mark.parametrize("field", ["transaction_hash", "log_index", "from_address", "to_address", "amount", "data"])
def test_build_job_rejects_logs_missing_required_fields(field):
	assert build_onchain_job(_log(**{field: None})) is None


@pytest.mark.parametrize("key", ["logIndex", "transactionHash"])
def test_log_without_position_is_not_queued_under_a_guessed_id(key):
	raw = _raw_log()
	del raw[key]

	log = parse_raw_log(raw)

	assert (log.log_index, log.transaction_hash).count(None) == 1
	assert build_onchain_job(log) is None


def test_build_job_accepts_zero_amount_and_empty_data():
	payload = build_onchain_job(_log(amount=0, data="0x"))

	assert payload is not None
	assert payload.amount == "0"


@pytest.mark.asyncio
async def test_enqueue_uses_tx_and_log_index_as_job_identity(queues):
	first = await enqueue_onchain_message(queues.onchain, _log(log_index=4))
	again = await enqueue_onchain_message(queues.onchain, _log(log_index=4))
	sibling = await enqueue_onchain_message(queues.onchain, _log(log_index=5))

	assert first is not None and first.id == f"{TX_HASH}-4"
	assert first.name == TX_HASH
	assert again is None
	assert sibling is not None
	assert queues.onchain.name == ONCHAIN_MESSAGE_QUEUE_NAME
	counts = await queues.onchain.get_counts()
	assert counts["waiting"] == 2


@pytest.mark.asyncio
async def test_enqueue_skips_malformed_log(queues):
	assert await enqueue_onchain_message(queues.onchain, _log(to_address=None)) is None
	counts = await queues.onchain.get_counts()
	assert counts["waiting"] == 0


def test_message_hint_round_trip():
	hint = decode_message_hint(encode_message_hint(10, 20))

	assert hint is not None
	assert (hint.from_fid, hint.to_fid) == (10, 20)


@pytest.mark.parametrize("data", [None, "0x", "0x" + b"not json".hex(), "0xff00", "0x" + b"[1, 2]".hex()])
def test_unreadable_hint_is_treated_as_absent(data):
	assert decode_message_hint(data) is None
