"""Client for frame push notification endpoints."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from yobox.domain.errors import MalformedPushResponseError, PushDeliveryError, PushRateLimitedError
from yobox.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class _SendResult(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	successful_tokens: List[str] = Field(alias="successfulTokens")
	invalid_tokens: List[str] = Field(alias="invalidTokens")
	rate_limited_tokens: List[str] = Field(alias="rateLimitedTokens")


class _SendResponse(BaseModel):
	result: _SendResult


@dataclass(frozen=True)
class PushResult:
	notification_id: str
	successful_tokens: list[str] = field(default_factory=list)
	invalid_tokens: list[str] = field(default_factory=list)


@dataclass
class PushClient:
	"""Posts one notification to a client's push endpoint for a batch of tokens."""

	http: httpx.AsyncClient
	timeout: float = 10.0

	async def send(
		self,
		*,
		url: str,
		tokens: Sequence[str],
		title: str,
		body: str,
		target_url: str,
		notification_id: Optional[str] = None,
	) -> PushResult:
		"""Deliver and validate the endpoint's answer.

		Raises ``PushDeliveryError`` for a non-200 answer,
		``MalformedPushResponseError`` when a 200 body does not match the
		response schema and ``PushRateLimitedError`` when any token was rate
		limited. Invalid tokens are returned for the caller to clean up.
		"""
		notification_id = notification_id or str(uuid.uuid4())
		response = await self.http.post(
			url,
			json={
				"notificationId": notification_id,
				"title": title,
				"body": body,
				"targetUrl": target_url,
				"tokens": list(tokens),
			},
			timeout=self.timeout,
		)

		if response.status_code != 200:
			obs_metrics.inc_push_delivery("error")
			raise PushDeliveryError(response.status_code, response.text)

		try:
			parsed = _SendResponse.model_validate_json(response.content)
		except ValidationError as exc:
			obs_metrics.inc_push_delivery("malformed")
			_LOG.warning("push.malformed_response", extra={"url": url, "errors": exc.error_count()})
			raise MalformedPushResponseError() from exc

		result = parsed.result
		obs_metrics.inc_push_tokens("successful", len(result.successful_tokens))
		obs_metrics.inc_push_tokens("invalid", len(result.invalid_tokens))
		if result.rate_limited_tokens:
			obs_metrics.inc_push_tokens("rate_limited", len(result.rate_limited_tokens))
			obs_metrics.inc_push_delivery("rate_limited")
			raise PushRateLimitedError(list(result.rate_limited_tokens))

		obs_metrics.inc_push_delivery("success")
		return PushResult(
			notification_id=notification_id,
			successful_tokens=list(result.successful_tokens),
			invalid_tokens=list(result.invalid_tokens),
		)


__all__ = ["PushClient", "PushResult"]
