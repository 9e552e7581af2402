"""
Billing API Router

  GET  /api/usage        caller's token usage against the plan limit
  POST /api/revenuecat   RevenueCat webhook → subscription state

Webhook event mapping:
  INITIAL_PURCHASE | RENEWAL | PRODUCT_CHANGE  → active / paid  (paid plan limit)
  BILLING_ISSUE | CANCELLATION                 → inactive / failed (free plan limit)
  anything else                                → logged and acknowledged

RevenueCat retries on non-2xx. A database failure answers 500 so the event
is redelivered; a malformed body answers 400 and shows up in the RevenueCat
dashboard.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from note_companion.auth.dependencies import CurrentUser, UsageMeter, require_revenuecat_secret
from note_companion.observability.usage import FREE_PLAN, PAID_PLAN
from note_companion.schemas.billing import (
    FAILED_EVENT_TYPES,
    PAID_EVENT_TYPES,
    RevenueCatEvent,
    UsageResponse,
)
from note_companion.schemas.uploads import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


def _bad_request(message: str, details: list[ErrorDetail] | None = None) -> JSONResponse:
    body = ErrorResponse(error_code="INVALID_REQUEST", message=message, details=details or [])
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))


@router.get("/usage", response_model=UsageResponse, summary="Token usage for the caller")
async def get_usage(user: CurrentUser, meter: UsageMeter) -> UsageResponse:
    snapshot = await meter.get_usage(user.user_id)
    return UsageResponse(
        user_id=snapshot.user_id,
        tokens_used=snapshot.tokens_used,
        token_limit=snapshot.token_limit,
        remaining=snapshot.remaining,
        exceeded=snapshot.exceeded,
        plan=snapshot.plan,
        subscription_status=snapshot.subscription_status,
    )


@router.post(
    "/revenuecat",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="RevenueCat subscription webhook",
    dependencies=[Depends(require_revenuecat_secret)],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid JSON or missing fields"},
        500: {"model": ErrorResponse, "description": "Subscription could not be stored"},
    },
)
async def revenuecat_webhook(request: Request, meter: UsageMeter):
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("RevenueCat webhook | invalid JSON body")
        return _bad_request("invalid json")

    try:
        event = RevenueCatEvent.model_validate(payload)
    except ValidationError as exc:
        logger.error("RevenueCat webhook | missing required fields")
        return _bad_request(
            "missing required fields",
            [
                ErrorDetail(field=".".join(str(p) for p in err["loc"]), message=err["msg"], code="MISSING_FIELD")
                for err in exc.errors()
            ],
        )

    billing_cycle = event.period_type or "unknown"
    try:
        if event.type in PAID_EVENT_TYPES:
            await meter.set_subscription(event.app_user_id, "active", "paid", billing_cycle, PAID_PLAN)
        elif event.type in FAILED_EVENT_TYPES:
            await meter.set_subscription(event.app_user_id, "inactive", "failed", billing_cycle, FREE_PLAN)
        else:
            logger.info(
                "RevenueCat webhook | unhandled event type=%s user=%s",
                event.type, event.app_user_id,
            )
    except Exception:
        logger.exception(
            "RevenueCat webhook | database error user=%s type=%s",
            event.app_user_id, event.type,
        )
        body = ErrorResponse(error_code="INTERNAL_ERROR", message="database error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
