"""
Shared FastAPI dependencies.
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


def get_base_url(request: Request) -> str:
    """Scheme and host the client used to reach us, without trailing slash."""
    return str(request.base_url).rstrip('/')
