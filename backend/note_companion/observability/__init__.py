"""
Observability Package — Usage Metering

Provides:
  UsageMeteringService — per-user token accounting against plan limits
  UsageSnapshot        — read model returned by get_usage()

Usage::

    from note_companion.observability import UsageMeteringService
    await UsageMeteringService(AsyncSessionLocal).increment(user_id, tokens)
"""

from note_companion.observability.usage import (
    PLAN_TOKEN_LIMITS,
    UsageMeteringService,
    UsageSnapshot,
    token_limit_for,
)

__all__ = ["PLAN_TOKEN_LIMITS", "UsageMeteringService", "UsageSnapshot", "token_limit_for"]
