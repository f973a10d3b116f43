from slowapi import Limiter
from slowapi.util import get_remote_address

from loan_console.core.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.rate_limit_storage_uri,
)

# Per client address, applied to the batch payout route.
PAYOUT_RATE_LIMIT = "6/minute"

__all__ = ["limiter", "PAYOUT_RATE_LIMIT"]
