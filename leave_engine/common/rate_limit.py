"""Rate limiting configuration using slowapi.

A module-level Limiter shared by the routers and wired into the app in
main.py. Write endpoints that drive leave transitions carry a tighter limit
than the default.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Default: 60 requests/minute per client IP for all endpoints.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)

TRANSITION_LIMIT = "30/minute"
