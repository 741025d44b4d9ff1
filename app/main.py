from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import firebase_admin
from firebase_admin import credentials
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
import os

from app.cache import UserCache
from app.config import settings
from app.database import Database
from app.errors import SocialGraphError, social_graph_error_handler, storage_error_handler
from app.logging_config import configure_logging
from app.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from app.middleware.request_id import RequestIDMiddleware
from app.routers import chat, friends, users
from app.services.notifications import firebase_ready
from app.utils.logger import get_logger

configure_logging()
logger = get_logger(__name__)


def init_firebase() -> None:
    """Initialize the Firebase Admin SDK once per process from the service account file."""
    if firebase_ready():
        return
    firebase_json_path = settings.FIREBASE_SERVICE_ACCOUNT_JSON
    if os.path.exists(firebase_json_path):
        cred = credentials.Certificate(firebase_json_path)
        firebase_admin.initialize_app(cred)
        logger.info("Initialized Firebase Admin with provided service account JSON")
    else:
        logger.warning(
            f"FIREBASE_SERVICE_ACCOUNT_JSON not found at {firebase_json_path}. "
            "Bearer tokens cannot be verified and push notifications are disabled."
        )


def create_app(database: Optional[Database] = None, user_cache: Optional[UserCache] = None) -> FastAPI:
    """
    Build the API application.

    ``database`` and ``user_cache`` are created from settings at startup when not
    given; whatever the lifespan creates it also disposes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_firebase()
        owns_db = database is None
        owns_cache = user_cache is None
        app.state.db = database or Database()
        app.state.user_cache = user_cache or UserCache.from_settings()
        app.state.db.create_all()

        if settings.DEBUG:
            logger.info("RideAlong API started in DEBUG mode - Docs available at /docs")
        else:
            logger.info("RideAlong API started in PRODUCTION mode - Docs disabled")
        yield

        if owns_cache:
            app.state.user_cache.close()
        if owns_db:
            app.state.db.dispose()
        logger.info("RideAlong API shut down")

    if settings.DEBUG:
        docs_config = {"docs_url": "/docs", "redoc_url": "/redoc", "openapi_url": "/openapi.json"}
    else:
        docs_config = {"docs_url": None, "redoc_url": None, "openapi_url": None}

    app = FastAPI(
        title="RideAlong API",
        description="Social graph API for the RideAlong ride-sharing app",
        version="1.0.0",
        lifespan=lifespan,
        **docs_config
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(SocialGraphError, social_graph_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(users.router)
    app.include_router(friends.router)
    app.include_router(chat.router)

    @app.get("/")
    async def root():
        return {"message": "RideAlong API", "version": "1.0.0"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {"status": "healthy", "service": "ridealong-api", "database": app.state.db.pool_status()}

    return app


app = create_app()
