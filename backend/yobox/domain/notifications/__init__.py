"""Push delivery, bulk job fan-out, delivery preferences and digests."""
