"""Shared slowapi limiter"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from choosemypower.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"]
)

ANALYTICS_LIMIT = f"{settings.analytics_rate_limit_per_minute}/minute"
