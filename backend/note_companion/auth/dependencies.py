"""
Composed FastAPI Dependencies

The single wiring point for the request context: who is calling (Clerk
user, cron scheduler or RevenueCat) and which pipeline services the route
gets. Route handlers import from here. Tests override the get_* providers
through app.dependency_overrides.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from note_companion.auth.token import TokenPayload, get_current_user
from note_companion.core.config import settings
from note_companion.db.uploads_repo import SqlAlchemyUploadRecordStore, UploadRecordStore
from note_companion.observability.usage import UsageMeteringService
from note_companion.workers.batch import BatchWorker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared-secret callers (cron trigger, billing webhook)
# ---------------------------------------------------------------------------

def _bearer_matches(authorization: str | None, secret: str) -> bool:
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode())


async def require_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Accept only `Authorization: Bearer <CRON_SECRET>`."""
    if not _bearer_matches(authorization, settings.cron_secret):
        logger.warning("Cron trigger rejected | bad or missing secret")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def require_revenuecat_secret(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Accept only `Authorization: Bearer <REVENUECAT_WEBHOOK_SECRET>`."""
    if not _bearer_matches(authorization, settings.revenuecat_webhook_secret):
        logger.warning("RevenueCat webhook rejected | bad or missing secret")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


# ---------------------------------------------------------------------------
# Pipeline services
# ---------------------------------------------------------------------------

def get_upload_store() -> UploadRecordStore:
    from note_companion.db.session import AsyncSessionLocal
    return SqlAlchemyUploadRecordStore(AsyncSessionLocal)


def get_usage_meter() -> UsageMeteringService:
    from note_companion.db.session import AsyncSessionLocal
    return UsageMeteringService(AsyncSessionLocal)


def get_batch_worker() -> BatchWorker:
    from note_companion.db.session import AsyncSessionLocal
    from note_companion.workers.cron import build_batch_worker
    return build_batch_worker(AsyncSessionLocal)


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

CurrentUser  = Annotated[TokenPayload, Depends(get_current_user)]
UploadStore  = Annotated[UploadRecordStore, Depends(get_upload_store)]
UsageMeter   = Annotated[UsageMeteringService, Depends(get_usage_meter)]
Worker       = Annotated[BatchWorker, Depends(get_batch_worker)]
