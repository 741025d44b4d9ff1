from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.utils.logger import get_logger

logger = get_logger(__name__)


class SocialGraphError(Exception):
    """Base class for errors that are surfaced to API clients.

    Each subclass fixes the HTTP status and a default machine-readable code.
    Call sites may pass a more specific ``code`` when clients need to tell
    cases apart.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"
    message = "Internal server error"

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(self.message)


class NotFound(SocialGraphError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Resource not found"


class Conflict(SocialGraphError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    message = "Resource is already in the requested state"


class Forbidden(SocialGraphError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    message = "Not allowed to perform this action"


class InvalidOperation(SocialGraphError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_operation"
    message = "Invalid operation"


class Unavailable(SocialGraphError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "unavailable"
    message = "Service temporarily unavailable, please retry later"


def error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


async def social_graph_error_handler(request: Request, exc: SocialGraphError) -> JSONResponse:
    """Render a SocialGraphError as the structured client-visible error envelope."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures that escaped the storage layer are reported as Unavailable."""
    logger.error(f"{request.method} {request.url.path} storage error: {exc.__class__.__name__}")
    error = Unavailable()
    return JSONResponse(status_code=error.status_code, content=error_body(error.code, error.message))
