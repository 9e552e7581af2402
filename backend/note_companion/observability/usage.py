"""
Usage Metering — Per-User Token Accounting

Every billable extraction adds its token cost to user_usage.tokens_used via a
single upsert:

    INSERT ... ON CONFLICT (user_id)
    DO UPDATE SET tokens_used = user_usage.tokens_used + EXCLUDED.tokens_used

The increment happens inside the database, so concurrent callers for the
same user never lose an update. The statement is valid on PostgreSQL and on
SQLite >= 3.24.

Plan limits (tokens per billing period):
    free      100 000
    monthly   5 000 000
    yearly    5 000 000

Subscription state is written by the RevenueCat webhook through
set_subscription(); limits are derived from the plan at write time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from note_companion.models.uploads import UserUsage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Plan catalogue
# ---------------------------------------------------------------------------

FREE_PLAN = "free"
PAID_PLAN = "paid"

PLAN_TOKEN_LIMITS: dict[str, int] = {
    "free":    100_000,
    "monthly": 5_000_000,
    "yearly":  5_000_000,
    "paid":    5_000_000,
}


def token_limit_for(plan: str, billing_cycle: str | None = None) -> int:
    """Limit for a plan; a paid plan is refined by its billing cycle."""
    if plan != FREE_PLAN and billing_cycle in PLAN_TOKEN_LIMITS:
        return PLAN_TOKEN_LIMITS[billing_cycle]
    return PLAN_TOKEN_LIMITS.get(plan, PLAN_TOKEN_LIMITS[FREE_PLAN])


# ---------------------------------------------------------------------------
# Snapshot returned by get_usage
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UsageSnapshot:
    user_id:             str
    tokens_used:         int
    token_limit:         int
    plan:                str = FREE_PLAN
    subscription_status: str = "inactive"

    @property
    def remaining(self) -> int:
        return max(self.token_limit - self.tokens_used, 0)

    @property
    def exceeded(self) -> bool:
        return self.tokens_used >= self.token_limit


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

_INCREMENT_SQL = text("""
    INSERT INTO user_usage
        (user_id, tokens_used, max_token_usage, subscription_status,
         payment_status, billing_cycle, current_plan, updated_at)
    VALUES
        (:user_id, :tokens, :free_limit, 'inactive',
         'unpaid', 'free', 'free', CURRENT_TIMESTAMP)
    ON CONFLICT (user_id)
    DO UPDATE SET
        tokens_used = user_usage.tokens_used + EXCLUDED.tokens_used,
        updated_at  = CURRENT_TIMESTAMP
""")

_SUBSCRIPTION_SQL = text("""
    INSERT INTO user_usage
        (user_id, tokens_used, max_token_usage, subscription_status,
         payment_status, billing_cycle, current_plan, updated_at)
    VALUES
        (:user_id, 0, :limit, :subscription_status,
         :payment_status, :billing_cycle, :plan, CURRENT_TIMESTAMP)
    ON CONFLICT (user_id)
    DO UPDATE SET
        max_token_usage     = EXCLUDED.max_token_usage,
        subscription_status = EXCLUDED.subscription_status,
        payment_status      = EXCLUDED.payment_status,
        billing_cycle       = EXCLUDED.billing_cycle,
        current_plan        = EXCLUDED.current_plan,
        updated_at          = CURRENT_TIMESTAMP
""")


class UsageMeteringService:
    """
    Records and queries per-user token usage.

    increment() raises on database failure. The batch worker treats metering
    as best-effort and logs the error without failing the record.

    Usage::

        meter = UsageMeteringService(AsyncSessionLocal)
        await meter.increment("user_2abc", 1234)
        snapshot = await meter.get_usage("user_2abc")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -----------------------------------------------------------------------
    # Write path: called after every billable extraction
    # -----------------------------------------------------------------------

    async def increment(self, user_id: str, tokens: int) -> None:
        """Atomically add `tokens` to the user's counter. Non-positive amounts are ignored."""
        if tokens <= 0:
            return

        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(_INCREMENT_SQL, {
                    "user_id":    user_id,
                    "tokens":     tokens,
                    "free_limit": PLAN_TOKEN_LIMITS[FREE_PLAN],
                })

        logger.info("Usage incremented | user=%s tokens=%d", user_id, tokens)

    async def set_subscription(
        self,
        user_id:             str,
        subscription_status: str,
        payment_status:      str,
        billing_cycle:       str,
        plan:                str,
    ) -> None:
        """Create or update the user's subscription state and plan limit."""
        limit = token_limit_for(plan, billing_cycle)
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(_SUBSCRIPTION_SQL, {
                    "user_id":             user_id,
                    "limit":               limit,
                    "subscription_status": subscription_status,
                    "payment_status":      payment_status,
                    "billing_cycle":       billing_cycle,
                    "plan":                plan,
                })

        logger.info(
            "Subscription updated | user=%s status=%s plan=%s cycle=%s limit=%d",
            user_id, subscription_status, plan, billing_cycle, limit,
        )

    # -----------------------------------------------------------------------
    # Read path
    # -----------------------------------------------------------------------

    async def get_usage(self, user_id: str) -> UsageSnapshot:
        """Current usage; users without a row are on the free plan with zero usage."""
        async with self._session_factory() as session:
            row = (
                await session.execute(select(UserUsage).where(UserUsage.user_id == user_id))
            ).scalars().first()

        if row is None:
            return UsageSnapshot(
                user_id=user_id,
                tokens_used=0,
                token_limit=PLAN_TOKEN_LIMITS[FREE_PLAN],
            )
        return UsageSnapshot(
            user_id=user_id,
            tokens_used=row.tokens_used,
            token_limit=row.max_token_usage,
            plan=row.current_plan,
            subscription_status=row.subscription_status,
        )
