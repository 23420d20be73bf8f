"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/oauth.py (to apply per-route limits with @limiter.limit()).

A single shared instance means every route shares one in-memory counter
store. This coarse per-client limit sits in front of the ledger-based
ThrottleGuard; it caps request volume, while the guard reasons about
failed logins.

Counters are keyed on origin_ip(), the same address the login log records.
Behind the reverse proxy the socket peer is the proxy itself, so keying on it
would turn the per-client limit into one global login cap.
"""

from fastapi import Request
from slowapi import Limiter

from core.config import get_settings


def origin_ip(request: Request) -> str:
    """Client address as reported by the reverse proxy, else the socket peer."""
    forwarded = request.headers.get(get_settings().real_ip_header, "").strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=origin_ip, storage_uri="memory://")
