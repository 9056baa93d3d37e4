"""Error tracking hook used by the worker harness and the scheduler."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class ErrorReporter(Protocol):
	"""Receives exceptions together with the job/run they happened in."""

	def capture_exception(self, exc: BaseException, *, context: Mapping[str, Any]) -> None:
		...


class LoggingErrorReporter:
	"""Reports through the structured logger; the log pipeline feeds alerting."""

	def capture_exception(self, exc: BaseException, *, context: Mapping[str, Any]) -> None:
		source = str(context.get("source") or context.get("queue") or "unknown")
		obs_metrics.inc_error_reported(source)
		_LOG.error(
			"error_reporter.exception",
			exc_info=(type(exc), exc, exc.__traceback__),
			extra={"error_context": dict(context), "error_type": type(exc).__name__},
		)


class RecordingErrorReporter:
	"""Keeps reported exceptions in memory; used by tests and local runs."""

	def __init__(self) -> None:
		self.reports: list[tuple[BaseException, dict[str, Any]]] = []

	def capture_exception(self, exc: BaseException, *, context: Mapping[str, Any]) -> None:
		self.reports.append((exc, dict(context)))
