# userdb/core/circuit_breaker.py

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

# Initialize limiter
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes"),
)

# Rate limit constants
PUBLIC_KEY_LIMIT = "10/minute"
