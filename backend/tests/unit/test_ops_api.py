import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from yobox.api import ops
from yobox.container import ServiceContainer
from yobox.domain.errors import UnrecoverableJobError
from yobox.domain.notifications.push import PushClient
from yobox.infra.queue import JobState
from yobox.infra.redis import RedisClients
from yobox.settings import Settings

ADMIN = {"X-Admin-Token": "ops-secret"}


@pytest_asyncio.fixture
async def container(fake_redis, repo, resolver, queues):
	http = httpx.AsyncClient()
	container = ServiceContainer(
		settings=Settings(OBS_ADMIN_TOKEN="ops-secret", APP_URL="https://app.test", QUEUE_PREFIX="test"),
		redis=RedisClients(cache=fake_redis, queue=fake_redis),
		repository=repo,
		resolver=resolver,
		queues=queues,
		push=PushClient(http=http),
		http=http,
	)
	yield container
	await http.aclose()


@pytest_asyncio.fixture
async def client(container):
	app = FastAPI()
	app.include_router(ops.router)
	app.state.container = container
	async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
		yield client


@pytest.mark.asyncio
async def test_health_endpoints(client):
	live = await client.get("/health/live")
	ready = await client.get("/health/ready")

	assert live.json() == {"status": "ok"}
	assert ready.status_code == 200
	assert ready.json()["redis"]["ok"] is True
	assert ready.json()["postgres"] == {"ok": True, "skipped": True}


@pytest.mark.asyncio
async def test_not_ready_without_container():
	app = FastAPI()
	app.include_router(ops.router)
	async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
		response = await client.get("/health/ready")

	assert response.status_code == 503


@pytest.mark.asyncio
@pytest.mark.parametrize("headers", [{}, {"X-Admin-Token": "wrong"}, {"Authorization": "Bearer wrong"}])
async def test_admin_routes_require_token(client, headers):
	assert (await client.get("/ops/queues", headers=headers)).status_code == 403
	assert (await client.get("/metrics", headers=headers)).status_code == 403


@pytest.mark.asyncio
async def test_bearer_token_is_accepted_for_metrics(client):
	response = await client.get("/metrics", headers={"Authorization": "Bearer ops-secret"})

	assert response.status_code == 200
	assert "text/plain" in response.headers["content-type"]


@pytest.mark.asyncio
async def test_queue_counts_and_failed_job_retry(client, queues):
	await queues.notifications.add("yo-push.test-0", {"kind": "notifications_bulk"})
	job = await queues.onchain.add("0xabc", {"kind": "onchain_message"}, job_id="0xabc-0")
	[entry] = await queues.onchain.claim("test-consumer", count=1)
	claimed = await queues.onchain.start(entry.job_id)
	await queues.onchain.fail(claimed, entry.entry_id, UnrecoverableJobError("bad payload"), retry=False)

	counts = (await client.get("/ops/queues", headers=ADMIN)).json()
	assert counts["notifications-bulk"]["waiting"] == 1
	assert counts["onchain-message"]["failed"] == 1

	listed = (await client.get("/ops/queues/onchain-message/jobs", headers=ADMIN)).json()
	assert [item["id"] for item in listed["jobs"]] == [job.id]
	assert listed["jobs"][0]["failed_reason"] == "bad payload"

	retried = await client.post(f"/ops/queues/onchain-message/jobs/{job.id}/retry", headers=ADMIN)
	assert retried.json() == {"status": "queued", "job_id": job.id}
	stored = await queues.onchain.get_job(job.id)
	assert stored.state is JobState.WAITING
	assert stored.attempts_made == 0

	again = await client.post(f"/ops/queues/onchain-message/jobs/{job.id}/retry", headers=ADMIN)
	assert again.status_code == 404


@pytest.mark.asyncio
async def test_unknown_queue_and_unlistable_state(client):
	assert (await client.get("/ops/queues/nope/jobs", headers=ADMIN)).status_code == 404
	response = await client.get("/ops/queues/onchain-message/jobs", params={"state": "waiting"}, headers=ADMIN)
	assert response.status_code == 400


@pytest.mark.asyncio
async def test_manual_digest_trigger(client):
	response = await client.post("/ops/digest", json={"cadence": "hourly", "force": True}, headers=ADMIN)

	assert response.status_code == 200
	assert response.json()["cadences"] == {"hourly": {"sent": 0, "skipped": 0, "errors": 0, "locked": False}}

	rejected = await client.post("/ops/digest", json={"cadence": "all"}, headers=ADMIN)
	assert rejected.status_code == 400


@pytest.mark.asyncio
async def test_frame_events_store_and_clear_delivery_details(client, repo, queues):
	added = await client.post(
		"/ops/users/42/frame-events",
		json={"event": "frame_added", "notificationDetails": {"url": "https://push.test/notify", "token": "tok-42"}},
		headers=ADMIN,
	)

	assert added.status_code == 200
	assert added.json() == {"fid": 42, "notification_type": "all", "notifications_enabled": True}
	assert repo.users[42].notification_token == "tok-42"
	assert (await queues.notifications.get_counts())["waiting"] == 1

	removed = await client.post("/ops/users/42/frame-events", json={"event": "frame_removed"}, headers=ADMIN)

	assert removed.json() == {"fid": 42, "notification_type": None, "notifications_enabled": False}
	assert repo.users[42].notification_details is None


@pytest.mark.asyncio
async def test_frame_event_payload_is_validated(client):
	unknown = await client.post("/ops/users/42/frame-events", json={"event": "frame_moved"}, headers=ADMIN)
	missing = await client.post("/ops/users/42/frame-events", json={"event": "notifications_enabled"}, headers=ADMIN)
	anonymous = await client.post("/ops/users/42/frame-events", json={"event": "frame_removed"})

	assert unknown.status_code == 422
	assert missing.status_code == 422
	assert anonymous.status_code == 403


@pytest.mark.asyncio
async def test_notification_type_update(client, repo):
	response = await client.put("/ops/users/7/notification-type", json={"notification_type": "hourly"}, headers=ADMIN)

	assert response.status_code == 200
	assert response.json() == {"fid": 7, "notification_type": "hourly", "notifications_enabled": False}
	assert repo.users[7].notification_type.value == "hourly"

	invalid = await client.put("/ops/users/7/notification-type", json={"notification_type": "weekly"}, headers=ADMIN)
	assert invalid.status_code == 422
