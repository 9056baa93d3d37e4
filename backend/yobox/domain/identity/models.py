"""Social identity records returned by the Farcaster user API."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IdentityRecord(BaseModel):
	"""A Farcaster account, reduced to the fields the pipeline uses."""

	model_config = ConfigDict(extra="ignore")

	fid: int
	username: Optional[str] = None
	display_name: Optional[str] = None
	pfp_url: Optional[str] = None
	custody_address: Optional[str] = None
	verified_addresses: List[str] = Field(default_factory=list)

	@model_validator(mode="before")
	@classmethod
	def _flatten_verifications(cls, value: Any) -> Any:
		# The API nests verifications as {"eth_addresses": [...], "sol_addresses": [...]}
		if isinstance(value, dict) and isinstance(value.get("verified_addresses"), dict):
			value = dict(value)
			value["verified_addresses"] = list(value["verified_addresses"].get("eth_addresses") or [])
		return value

	@property
	def label(self) -> str:
		"""Name used in notification bodies."""
		return self.username or f"!{self.fid}"
