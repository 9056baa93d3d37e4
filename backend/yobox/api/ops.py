"""Operations endpoints: health checks, metrics, queue administration and user delivery settings."""

from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ValidationError

from yobox.container import ServiceContainer
from yobox.domain.messaging.models import NotificationType, User
from yobox.domain.notifications.preferences import parse_frame_event
from yobox.infra.queue import JobQueue, JobState
from yobox.obs import health
from yobox.obs import metrics as obs_metrics

router = APIRouter(prefix="", tags=["ops"])


def get_container(request: Request) -> ServiceContainer:
	container = getattr(request.app.state, "container", None)
	if container is None:
		raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="not_ready")
	return container


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	container: ServiceContainer = Depends(get_container),
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = container.settings.obs_admin_token
	if not token:
		# Fail closed: if no token is configured, no admin access is allowed.
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	provided = _resolve_token(X_Admin_Token, authorization)
	if provided != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	container: ServiceContainer = Depends(get_container),
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if container.settings.obs_metrics_public:
		return
	await require_admin(container=container, X_Admin_Token=X_Admin_Token, authorization=authorization)


def _queue_or_404(container: ServiceContainer, name: str) -> JobQueue:
	queue = container.queues.by_name(name)
	if queue is None:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="unknown_queue")
	return queue


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready(container: ServiceContainer = Depends(get_container)) -> Response:
	status_code, payload = await health.readiness(container.redis.queue, container.pool)
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


@router.get("/ops/queues", dependencies=[Depends(require_admin)])
async def queue_counts(container: ServiceContainer = Depends(get_container)) -> dict[str, dict[str, int]]:
	return {queue.name: await queue.get_counts() for queue in container.queues.all()}


@router.get("/ops/queues/{name}/jobs", dependencies=[Depends(require_admin)])
async def list_jobs(
	name: str,
	state: JobState = JobState.FAILED,
	start: int = 0,
	end: int = 49,
	container: ServiceContainer = Depends(get_container),
) -> dict:
	queue = _queue_or_404(container, name)
	try:
		jobs = await queue.get_jobs(state, start=start, end=end)
	except ValueError as exc:
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="state_not_listable") from exc
	return {"queue": name, "state": state.value, "jobs": [job.to_dict() for job in jobs]}


@router.post("/ops/queues/{name}/jobs/{job_id}/retry", dependencies=[Depends(require_admin)])
async def retry_job(name: str, job_id: str, container: ServiceContainer = Depends(get_container)) -> dict[str, str]:
	queue = _queue_or_404(container, name)
	if not await queue.retry_job(job_id):
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="failed_job_not_found")
	return {"status": "queued", "job_id": job_id}


class DigestTrigger(BaseModel):
	cadence: Optional[NotificationType] = None
	force: bool = False


@router.post("/ops/digest", dependencies=[Depends(require_admin)])
async def trigger_digest(
	payload: DigestTrigger,
	container: ServiceContainer = Depends(get_container),
) -> dict:
	if payload.cadence is NotificationType.ALL:
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="cadence_not_batched")
	start = time.perf_counter()
	try:
		summary = await container.digest().run(
			cadences=[payload.cadence] if payload.cadence else None,
			force=payload.force,
		)
	except Exception as exc:
		obs_metrics.record_job_run("digest_manual", result="error")
		raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="digest_failed") from exc
	obs_metrics.record_job_run("digest_manual", result="ok", duration_seconds=time.perf_counter() - start)
	return summary.to_dict()


def _delivery_settings(fid: int, user: Optional[User]) -> dict:
	return {
		"fid": fid,
		"notification_type": user.notification_type.value if user is not None else None,
		"notifications_enabled": user is not None and user.notification_details is not None,
	}


@router.post("/ops/users/{fid}/frame-events", dependencies=[Depends(require_admin)])
async def apply_frame_event(fid: int, payload: dict, container: ServiceContainer = Depends(get_container)) -> dict:
	try:
		event = parse_frame_event(payload)
	except ValidationError as exc:
		raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_frame_event") from exc
	user = await container.preferences().apply_frame_event(fid, event)
	return _delivery_settings(fid, user)


class NotificationTypeUpdate(BaseModel):
	notification_type: NotificationType


@router.put("/ops/users/{fid}/notification-type", dependencies=[Depends(require_admin)])
async def set_notification_type(
	fid: int,
	payload: NotificationTypeUpdate,
	container: ServiceContainer = Depends(get_container),
) -> dict:
	user = await container.preferences().set_notification_type(fid, payload.notification_type)
	return _delivery_settings(fid, user)


__all__ = ["router"]
