from .request_id import RequestIDMiddleware
from .rate_limit import limiter, rate_limit_friend_request, rate_limit_exceeded_handler

__all__ = [
    "RequestIDMiddleware",
    "limiter",
    "rate_limit_friend_request",
    "rate_limit_exceeded_handler",
]
