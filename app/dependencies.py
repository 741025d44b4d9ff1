from fastapi import Depends, Query
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.services.connections import ConnectionService


class Pagination:
    """Page query parameters shared by every listing endpoint."""

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number"),
        page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"),
    ):
        self.page = page
        self.page_size = page_size


def get_connection_service(db: Session = Depends(get_db)) -> ConnectionService:
    return ConnectionService(db)
