"""Farcaster identity lookups and the address cache."""

from yobox.domain.identity.client import IdentityLookup, NeynarClient
from yobox.domain.identity.models import IdentityRecord
from yobox.domain.identity.resolver import AddressResolver, purge_cached_users, select_identity

__all__ = [
	"AddressResolver",
	"IdentityLookup",
	"IdentityRecord",
	"NeynarClient",
	"purge_cached_users",
	"select_identity",
]
