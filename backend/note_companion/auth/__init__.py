from note_companion.auth.token import TokenPayload, get_current_user, verify_token
from note_companion.auth.dependencies import (
    CurrentUser,
    UploadStore,
    UsageMeter,
    Worker,
    require_cron_secret,
    require_revenuecat_secret,
)

__all__ = [
    "TokenPayload", "get_current_user", "verify_token",
    "require_cron_secret", "require_revenuecat_secret",
    "CurrentUser", "UploadStore", "UsageMeter", "Worker",
]
