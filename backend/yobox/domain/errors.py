"""Exception taxonomy for the pipeline.

Only transient or integration failures are exceptions. Business outcomes that
must not be retried (unknown identity, cooldown, duplicate transfer) are
returned as ``JobOutcome`` values instead.
"""

from __future__ import annotations


class PipelineError(Exception):
	"""Base class for pipeline errors."""


class UnrecoverableJobError(PipelineError):
	"""The job can never succeed (e.g. its payload fails validation); skip remaining attempts."""


class IdentityLookupError(PipelineError):
	"""The identity API could not be queried."""

	def __init__(self, detail: str, *, status_code: int | None = None) -> None:
		super().__init__(detail)
		self.status_code = status_code


class PushError(PipelineError):
	"""Base class for push delivery failures."""


class PushDeliveryError(PushError):
	"""The push endpoint answered with a non-200 status."""

	def __init__(self, status_code: int, body: str) -> None:
		super().__init__(body or "Unknown error")
		self.status_code = status_code
		self.body = body


class MalformedPushResponseError(PushError):
	"""The push endpoint answered 200 with a body that does not match its schema."""

	def __init__(self) -> None:
		super().__init__("Malformed response")


class PushRateLimitedError(PushError):
	"""At least one token in the chunk was rate limited by the push endpoint."""

	def __init__(self, tokens: list[str]) -> None:
		super().__init__("Rate limited")
		self.tokens = tokens
