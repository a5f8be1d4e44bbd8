"""Debounce and rate control — cooldowns, token buckets, volume clamp."""

from bellwether.ratelimit.bucket import BurstLimiter, TokenBucket
from bellwether.ratelimit.cooldown import CooldownController, CooldownRecord
from bellwether.ratelimit.volume import clamp_volume

__all__ = [
    "BurstLimiter",
    "CooldownController",
    "CooldownRecord",
    "TokenBucket",
    "clamp_volume",
]
