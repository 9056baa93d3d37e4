"""Central registry for Prometheus metrics used across the pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

JOBS_ENQUEUED = Counter(
	"yobox_jobs_enqueued_total",
	"Jobs added to a queue",
	["queue"],
)

JOBS_DEDUPLICATED = Counter(
	"yobox_jobs_deduplicated_total",
	"Job additions ignored because the job id already exists",
	["queue"],
)

JOBS_FINISHED = Counter(
	"yobox_jobs_finished_total",
	"Jobs that left the active state",
	["queue", "result"],
)

JOB_DURATION = Histogram(
	"yobox_job_duration_seconds",
	"Handler execution time per job attempt",
	["queue"],
	buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

JOBS_RECLAIMED = Counter(
	"yobox_jobs_reclaimed_total",
	"Stalled jobs reclaimed from dead consumers",
	["queue"],
)

WORKER_LOOP_ERRORS = Counter(
	"yobox_worker_loop_errors_total",
	"Queue consumer loop iterations that failed before running a job",
	["queue"],
)

ONCHAIN_OUTCOMES = Counter(
	"yobox_onchain_message_outcomes_total",
	"Terminal outcomes of onchain message jobs",
	["outcome"],
)

PUSH_DELIVERIES = Counter(
	"yobox_push_deliveries_total",
	"Push endpoint calls by result",
	["result"],
)

PUSH_TOKENS = Counter(
	"yobox_push_tokens_total",
	"Push tokens reported by the delivery endpoint",
	["status"],
)

IDENTITY_CACHE = Counter(
	"yobox_identity_cache_total",
	"Identity cache lookups",
	["kind", "result"],
)

DIGEST_NOTIFICATIONS = Counter(
	"yobox_digest_notifications_total",
	"Digest notifications by result",
	["cadence", "result"],
)

LISTENER_LOGS = Counter(
	"yobox_listener_logs_total",
	"Chain logs seen by the event listener",
	["result"],
)

LISTENER_LAST_BLOCK = Gauge(
	"yobox_listener_last_block",
	"Last block fully processed by the event listener",
)

ERRORS_REPORTED = Counter(
	"yobox_errors_reported_total",
	"Exceptions handed to the error reporter",
	["source"],
)

BACKGROUND_RUNS = Counter(
	"yobox_background_runs_total",
	"Scheduled background job runs",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"yobox_background_duration_seconds",
	"Scheduled background job duration",
	["name"],
)

REDIS_UP = Gauge("yobox_redis_up", "Redis reachability from readiness checks")
POSTGRES_UP = Gauge("yobox_postgres_up", "Postgres reachability from readiness checks")


def inc_job_enqueued(queue: str, count: int = 1) -> None:
	JOBS_ENQUEUED.labels(queue=queue).inc(count)


def inc_job_deduplicated(queue: str) -> None:
	JOBS_DEDUPLICATED.labels(queue=queue).inc()


def inc_job_finished(queue: str, result: str) -> None:
	JOBS_FINISHED.labels(queue=queue, result=result).inc()


def observe_job_duration(queue: str, seconds: float) -> None:
	JOB_DURATION.labels(queue=queue).observe(seconds)


def inc_job_reclaimed(queue: str, count: int = 1) -> None:
	JOBS_RECLAIMED.labels(queue=queue).inc(count)


def inc_worker_loop_error(queue: str) -> None:
	WORKER_LOOP_ERRORS.labels(queue=queue).inc()


def inc_onchain_outcome(outcome: str) -> None:
	ONCHAIN_OUTCOMES.labels(outcome=outcome).inc()


def inc_push_delivery(result: str) -> None:
	PUSH_DELIVERIES.labels(result=result).inc()


def inc_push_tokens(status: str, count: int) -> None:
	if count:
		PUSH_TOKENS.labels(status=status).inc(count)


def inc_identity_cache(kind: str, result: str, count: int = 1) -> None:
	if count:
		IDENTITY_CACHE.labels(kind=kind, result=result).inc(count)


def inc_digest(cadence: str, result: str) -> None:
	DIGEST_NOTIFICATIONS.labels(cadence=cadence, result=result).inc()


def inc_listener_log(result: str) -> None:
	LISTENER_LOGS.labels(result=result).inc()


def set_listener_block(block_number: int) -> None:
	LISTENER_LAST_BLOCK.set(block_number)


def inc_error_reported(source: str) -> None:
	ERRORS_REPORTED.labels(source=source).inc()


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)
