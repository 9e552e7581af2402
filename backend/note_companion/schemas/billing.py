"""
Billing — usage snapshot and RevenueCat webhook payloads.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from note_companion.schemas.uploads import CamelModel


# RevenueCat event types that flip a subscription
PAID_EVENT_TYPES:   frozenset[str] = frozenset({"INITIAL_PURCHASE", "RENEWAL", "PRODUCT_CHANGE"})
FAILED_EVENT_TYPES: frozenset[str] = frozenset({"BILLING_ISSUE", "CANCELLATION"})


class UsageResponse(CamelModel):
    """GET /api/usage — current consumption against the plan limit."""
    user_id:             str
    tokens_used:         int
    token_limit:         int
    remaining:           int
    exceeded:            bool
    plan:                str
    subscription_status: str


class RevenueCatEvent(BaseModel):
    """
    The fields we act on from a RevenueCat webhook.

    RevenueCat nests them under "event"; older test payloads send them flat.
    Both shapes are accepted.
    """
    type:        str        = Field(..., min_length=1)
    app_user_id: str        = Field(..., min_length=1)
    period_type: str | None = None
    product_id:  str | None = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap_event(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("event"), dict):
            return data["event"]
        return data
