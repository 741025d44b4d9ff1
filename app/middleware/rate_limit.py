from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from app.config import settings
from app.errors import error_body
from app.utils.logger import get_logger

logger = get_logger(__name__)


def get_user_id_or_ip(request: Request):
    """
    Key requests by authenticated user, falling back to the client address.
    The user id is put on request.state by the auth dependency.
    """
    user_id = getattr(request.state, 'user_id', None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_id_or_ip,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit hit on {request.url.path} by {get_user_id_or_ip(request)}")
    return JSONResponse(
        status_code=429,
        content=error_body("rate_limited", f"Rate limit exceeded: {exc.detail}. Please try again later."),
        headers={"Retry-After": "60"},
    )


def rate_limit_friend_request(func):
    """Rate limit for sending friend requests."""
    return limiter.limit(settings.FRIEND_REQUEST_RATE_LIMIT)(func)
