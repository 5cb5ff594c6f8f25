"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware; api/routes/v1/auth.py applies the login
limit with @limiter.limit(). One shared instance means one counter store; a
limiter per module would count separately and never trigger.

Counters live in RATE_LIMIT_STORAGE_URI. The default memory:// is per
process, so behind several workers each one counts on its own; point it at
redis:// to share counts.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    enabled=_settings.rate_limit_enabled,
)
