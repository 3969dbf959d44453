# File: app/core/ratelimit.py
from slowapi import Limiter
from slowapi.util import get_remote_address
from app.core.config import settings

# per client address; only the public write routes carry a limit
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
