from datetime import datetime, timezone

import pytest

from factories import FakeIdentityLookup, identity
from yobox.domain.identity.resolver import AddressResolver
from yobox.domain.jobs import NotificationsBulkJobData
from yobox.domain.messaging.models import NotificationDetails, NotificationType
from yobox.domain.notifications.digest import DigestScheduler, cadences_for, compose_digest_body
from yobox.obs.errors import RecordingErrorReporter

PUSH_URL = "https://push.test/notify"


@pytest.fixture
def profiles() -> FakeIdentityLookup:
	lookup = FakeIdentityLookup()
	for fid, name in [(10, "alice"), (20, "bob"), (40, "dave")]:
		lookup.by_fid[fid] = identity(fid, name)
	return lookup


@pytest.fixture
def reporter() -> RecordingErrorReporter:
	return RecordingErrorReporter()


@pytest.fixture
def scheduler(fake_redis, repo, queues, profiles, reporter, clock) -> DigestScheduler:
	return DigestScheduler(
		repository=repo,
		resolver=AddressResolver(fake_redis, profiles),
		queue=queues.notifications,
		redis=fake_redis,
		app_url="https://app.test",
		reporter=reporter,
		lock_prefix="test",
		clock=clock,
	)


async def _subscriber(repo, fid: int, mode: NotificationType = NotificationType.HOURLY):
	await repo.set_notification_details(fid, NotificationDetails(url=PUSH_URL, token=f"token-{fid}"))
	return await repo.set_notification_type(fid, mode)


async def _digests(queues) -> list[NotificationsBulkJobData]:
	entries = await queues.notifications.redis.xrange(queues.notifications.stream_key)
	jobs = [await queues.notifications.get_job(fields["job_id"]) for _entry_id, fields in entries]
	return [NotificationsBulkJobData.model_validate(job.data) for job in jobs]


def test_body_names_first_sender_and_counts_others():
	assert compose_digest_body("alice", 1) == "from alice"
	assert compose_digest_body("alice", 2) == "from alice and 1 other"
	assert compose_digest_body("!42", 4) == "from !42 and 3 others"


def test_semi_daily_runs_only_at_configured_hours():
	at = lambda hour: datetime(2025, 3, 1, hour, tzinfo=timezone.utc)  # noqa: E731

	assert cadences_for(at(0)) == [NotificationType.HOURLY, NotificationType.SEMI_DAILY]
	assert cadences_for(at(12)) == [NotificationType.HOURLY, NotificationType.SEMI_DAILY]
	assert cadences_for(at(7)) == [NotificationType.HOURLY]
	assert cadences_for(at(6), semi_daily_hours=(6, 18)) == [NotificationType.HOURLY, NotificationType.SEMI_DAILY]


@pytest.mark.asyncio
async def test_hourly_digest_counts_distinct_senders_after_last_outbound(scheduler, repo, clock, queues):
	user = await _subscriber(repo, 1)
	alice = await repo.get_or_create_user(10)
	bob = await repo.get_or_create_user(20)
	carol = await repo.get_or_create_user(30)

	clock.advance(minutes=-50)
	repo.add_message(carol, user)  # before the user's own reply: already seen
	clock.advance(minutes=5)
	repo.add_message(user, carol)
	clock.advance(minutes=5)
	repo.add_message(bob, user)
	clock.advance(minutes=10)
	repo.add_message(alice, user)
	latest = repo.add_message(bob, user, created_at=clock().replace(second=30))
	clock.advance(minutes=30)

	summary = await scheduler.run(cadences=[NotificationType.HOURLY])

	assert summary.cadences["hourly"].sent == 1
	[digest] = await _digests(queues)
	assert digest.title == "yo"
	assert digest.body == "from bob and 1 other"
	assert digest.notification_id == latest.id
	assert [(n.token, n.fid) for n in digest.notifications] == [("token-1", 1)]


@pytest.mark.asyncio
async def test_messages_outside_lookback_are_ignored(scheduler, repo, clock, queues):
	user = await _subscriber(repo, 1)
	alice = await repo.get_or_create_user(10)
	clock.advance(hours=-2)
	repo.add_message(alice, user)
	clock.advance(hours=2)

	summary = await scheduler.run(cadences=[NotificationType.HOURLY])

	assert summary.cadences["hourly"].sent == 0
	assert summary.cadences["hourly"].skipped == 1
	assert await _digests(queues) == []


@pytest.mark.asyncio
async def test_semi_daily_uses_twelve_hour_window_and_skips_other_modes(scheduler, repo, clock, queues):
	half_day = await _subscriber(repo, 2, NotificationType.SEMI_DAILY)
	realtime = await _subscriber(repo, 3, NotificationType.ALL)
	dave = await repo.get_or_create_user(40)
	clock.advance(hours=-6)
	repo.add_message(dave, half_day)
	repo.add_message(dave, realtime)
	clock.advance(hours=6)

	summary = await scheduler.run(cadences=[NotificationType.SEMI_DAILY])

	assert summary.cadences["semi_daily"].sent == 1
	[digest] = await _digests(queues)
	assert digest.body == "from dave"
	assert digest.notifications[0].fid == 2


@pytest.mark.asyncio
async def test_unknown_sender_falls_back_to_fid_placeholder(scheduler, repo, queues):
	user = await _subscriber(repo, 1)
	stranger = await repo.get_or_create_user(77)
	repo.add_message(stranger, user)

	await scheduler.run(cadences=[NotificationType.HOURLY])

	[digest] = await _digests(queues)
	assert digest.body == "from !77"


@pytest.mark.asyncio
async def test_one_failing_user_does_not_abort_the_run(scheduler, repo, reporter, queues, monkeypatch):
	first = await _subscriber(repo, 1)
	second = await _subscriber(repo, 2)
	alice = await repo.get_or_create_user(10)
	repo.add_message(alice, first)
	repo.add_message(alice, second)

	original = repo.list_unseen_inbound

	async def flaky(user_id, since):
		if user_id == first.id:
			raise RuntimeError("db hiccup")
		return await original(user_id, since)

	monkeypatch.setattr(repo, "list_unseen_inbound", flaky)

	summary = await scheduler.run(cadences=[NotificationType.HOURLY])

	assert summary.cadences["hourly"].errors == 1
	assert summary.cadences["hourly"].sent == 1
	[digest] = await _digests(queues)
	assert digest.notifications[0].fid == 2
	[(exc, context)] = reporter.reports
	assert isinstance(exc, RuntimeError)
	assert context == {"source": "digest", "cadence": "hourly", "fid": 1}


@pytest.mark.asyncio
async def test_run_lock_prevents_double_send_within_the_hour(scheduler, repo, queues):
	user = await _subscriber(repo, 1)
	alice = await repo.get_or_create_user(10)
	repo.add_message(alice, user)

	first = await scheduler.run()
	second = await scheduler.run()

	assert first.cadences["hourly"].sent == 1
	assert second.cadences["hourly"].locked is True
	assert len(await _digests(queues)) == 1
