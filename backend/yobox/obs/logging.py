"""JSON log lines tagged with the job currently being processed."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from yobox.settings import settings

_ROOT_LOGGER = "yobox"

# queue / job_id / job_name of the job running in the current task
_JOB_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("obs_job_context", default={})

_REDACT_MARKERS = ("token", "secret", "authorization", "password", "api_key")
_REDACTED = "[redacted]"
_ELLIPSIS = "…"
_STRING_LIMIT = 256
_ITEMS_LIMIT = 10

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__) | {
	"message",
	"asctime",
	"taskName",
}


def bind_job_context(*, queue: Optional[str] = None, job_id: Optional[str] = None, job_name: Optional[str] = None) -> Token:
	"""Attach job fields to every log line emitted from the current task."""
	context = dict(_JOB_CONTEXT.get())
	context.update({key: value for key, value in (("queue", queue), ("job_id", job_id), ("job_name", job_name)) if value})
	return _JOB_CONTEXT.set(context)


def reset_context(token: Token) -> None:
	_JOB_CONTEXT.reset(token)


def current_job_context() -> Mapping[str, str]:
	return _JOB_CONTEXT.get()


def scrub(key: str, value: Any) -> Any:
	"""Redact secrets by field name and clip long strings and collections."""
	if any(marker in key.lower() for marker in _REDACT_MARKERS):
		return _REDACTED
	if isinstance(value, str):
		return value if len(value) <= _STRING_LIMIT else value[:_STRING_LIMIT] + _ELLIPSIS
	if isinstance(value, Mapping):
		items = list(value.items())
		clipped = {str(k): scrub(str(k), v) for k, v in items[:_ITEMS_LIMIT]}
		if len(items) > _ITEMS_LIMIT:
			clipped[_ELLIPSIS] = f"+{len(items) - _ITEMS_LIMIT} keys"
		return clipped
	if isinstance(value, (list, tuple, set)):
		items = [scrub("", item) for item in value]
		return items if len(items) <= _ITEMS_LIMIT else items[:_ITEMS_LIMIT] + [_ELLIPSIS]
	return value


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		entry: dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		entry.update(_JOB_CONTEXT.get())
		if record.exc_info:
			entry["exc_info"] = self.formatException(record.exc_info)
		extras = {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS and key not in entry}
		entry.update({key: scrub(key, value) for key, value in extras.items()})
		return json.dumps(entry, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Drops a share of INFO records; other levels always pass."""

	def __init__(self, rate: Optional[float] = None) -> None:
		super().__init__()
		self.rate = rate

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = settings.obs_log_sampling_rate_info if self.rate is None else self.rate
		return rate >= 1.0 or random.random() < max(0.0, rate)


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	# request lines from the identity and push clients
	logging.getLogger("httpx").setLevel(logging.WARNING)
	return logging.getLogger(_ROOT_LOGGER)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _ROOT_LOGGER)


__all__ = [
	"InfoSamplingFilter",
	"JSONLogFormatter",
	"bind_job_context",
	"configure_logging",
	"current_job_context",
	"get_logger",
	"reset_context",
	"scrub",
]
