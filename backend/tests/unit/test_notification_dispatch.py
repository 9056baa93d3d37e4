import math

import pytest

from yobox.domain.errors import UnrecoverableJobError
from yobox.domain.jobs import NotificationsBulkJobData, OnchainMessageJobData, parse_job_payload
from yobox.domain.notifications.dispatch import Recipient, chunk_recipients, notify_users
from yobox.infra.queue import JobState


def _recipients(count: int, url: str = "https://push.warpcast.com/notify") -> list[Recipient]:
	return [Recipient(token=f"tok-{url[-3:]}-{i}", url=url, fid=i) for i in range(count)]


@pytest.mark.parametrize("count", [1, 99, 100, 101, 250, 1000])
def test_chunk_count_is_ceil_of_recipients_over_100(count):
	chunks = chunk_recipients(_recipients(count))

	assert len(chunks) == math.ceil(count / 100)
	assert all(1 <= len(chunk.recipients) <= 100 for chunk in chunks)
	assert sum(len(chunk.recipients) for chunk in chunks) == count
	assert [chunk.chunk_id for chunk in chunks] == list(range(len(chunks)))


def test_chunks_never_mix_endpoints():
	mixed = _recipients(150, "https://a.example/one") + _recipients(30, "https://b.example/two")
	mixed.append(Recipient(token="late", url="https://a.example/one"))

	chunks = chunk_recipients(mixed)

	assert [(chunk.url, len(chunk.recipients)) for chunk in chunks] == [
		("https://a.example/one", 100),
		("https://a.example/one", 51),
		("https://b.example/two", 30),
	]


@pytest.mark.asyncio
async def test_notify_users_enqueues_named_jobs(queues):
	recipients = _recipients(120, "https://push.warpcast.com/notify") + _recipients(2, "https://other.host/hook")

	jobs = await notify_users(
		queues.notifications,
		recipients,
		title="yo",
		body="from alice",
		target_url="https://app.test",
		notification_id="msg-1",
	)

	assert [job.name for job in jobs] == ["yo-push.warpcast.com-0", "yo-push.warpcast.com-1", "yo-other.host-0"]
	payload = NotificationsBulkJobData.model_validate(jobs[0].data)
	assert len(payload.notifications) == 100
	assert payload.notification_id == "msg-1"
	assert payload.notifications[0].fid == 0
	stored = await queues.notifications.get_job(jobs[2].id)
	assert stored is not None and stored.state is JobState.WAITING
	assert stored.attempts == 3


def test_payload_parsing_dispatches_on_kind():
	bulk = parse_job_payload(
		{
			"kind": "notifications_bulk",
			"notifications": [{"token": "t"}],
			"url": "https://push.test",
			"title": "yo",
			"body": "from bob",
			"target_url": "https://app.test",
		}
	)
	onchain = parse_job_payload(
		{
			"kind": "onchain_message",
			"transaction_hash": "0xabc",
			"from_address": "0x" + "1" * 40,
			"to_address": "0x" + "2" * 40,
			"amount": "1000000000000000000",
			"data": "0x",
		}
	)

	assert isinstance(bulk, NotificationsBulkJobData)
	assert isinstance(onchain, OnchainMessageJobData)


@pytest.mark.parametrize(
	"raw",
	[
		{"transaction_hash": "0xabc"},
		{"kind": "unknown"},
		{"kind": "notifications_bulk", "notifications": [], "url": "u", "title": "t", "body": "b", "target_url": "x"},
		{
			"kind": "notifications_bulk",
			"notifications": [{"token": "t"}],
			"url": "u",
			"title": "x" * 33,
			"body": "b",
			"target_url": "x",
		},
		{
			"kind": "onchain_message",
			"transaction_hash": "0xabc",
			"from_address": "0x1",
			"to_address": "0x" + "2" * 40,
			"amount": "1",
		},
		{
			"kind": "onchain_message",
			"transaction_hash": "0xabc",
			"from_address": "0x" + "1" * 40,
			"to_address": "0x" + "2" * 40,
			"amount": 1.5,
		},
	],
)
def test_invalid_payloads_are_unrecoverable(raw):
	with pytest.raises(UnrecoverableJobError):
		parse_job_payload(raw)
