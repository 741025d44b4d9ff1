from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.auth import get_current_user, get_user_cache
from app import schemas
from app.cache import UserCache
from app.config import settings
from app.crud.connections import ConnectionsCRUD
from app.crud.user import get_user, get_active_user, update_user_fields, deactivate_user, search_users
from app.dependencies import Pagination, get_connection_service
from app.errors import InvalidOperation, NotFound
from app.schemas.connections import (
    ActionStatusResponse, Page, Relationship, UserDetailResponse, UserSearchResult
)
from app.services.connections import ConnectionService
from app.services.policy import relationship_for, evaluate_capabilities
from app.utils.logger import get_logger

router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={404: {"description": "Not found"}}
)

logger = get_logger(__name__)


@router.get("/me", response_model=schemas.UserResponse)
async def get_current_user_info(
    current_user: schemas.CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get the current user's information"""
    db_user = get_user(db, current_user.id)
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user


@router.patch("/me", response_model=schemas.UserResponse)
async def update_user_info(
    user_update: schemas.UserUpdate,
    current_user: schemas.CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    user_cache: UserCache = Depends(get_user_cache),
):
    """Update the current user's information"""
    db_user = get_user(db, current_user.id)
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")

    update_data = user_update.model_dump(exclude_unset=True)
    if update_data:
        try:
            db_user = update_user_fields(db, db_user, update_data)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        # Cached identity would otherwise serve the old profile until the TTL runs out
        if not user_cache.invalidate(current_user.id) and user_cache.is_available():
            logger.warning(f"Failed to invalidate cached user {current_user.id}")
        logger.info(f"Profile updated for user {current_user.id}: {sorted(update_data)}")

    return db_user


@router.delete("/me", response_model=ActionStatusResponse)
async def delete_account(
    current_user: schemas.CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ConnectionService = Depends(get_connection_service),
    user_cache: UserCache = Depends(get_user_cache),
):
    """Delete the current user's account. All connections are removed and the user is deactivated."""
    removed = service.purge_user(current_user.id)
    deactivate_user(db, current_user.id)
    user_cache.invalidate(current_user.id)
    logger.info(f"Account deleted for user {current_user.id}, {removed} connections removed")
    return ActionStatusResponse(message="Account deleted successfully", status="deleted")


@router.get("/search", response_model=Page[UserSearchResult])
async def search_user_directory(
    q: str = Query(..., max_length=settings.MAX_SEARCH_LENGTH, description="Name to search for"),
    pagination: Pagination = Depends(),
    current_user: schemas.CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search all users by name. Each result carries its relationship to the current user."""
    term = q.strip()
    if len(term) < settings.MIN_SEARCH_LENGTH:
        raise InvalidOperation(
            f"Search query must be at least {settings.MIN_SEARCH_LENGTH} characters",
            code="search_query_too_short",
        )

    users, total = search_users(db, term, exclude_user_id=current_user.id,
                                page=pagination.page, page_size=pagination.page_size)
    connections = ConnectionsCRUD.rows_for_partners(db, current_user.id, [u.id for u in users])

    items = [
        UserSearchResult(
            **schemas.UserPublic.model_validate(user).model_dump(),
            relationship=relationship_for(connections.get(user.id), current_user.id),
        )
        for user in users
    ]
    return Page[UserSearchResult].build(items, total, pagination.page, pagination.page_size)


@router.get("/{user_id}", response_model=UserDetailResponse)
async def get_user_profile(
    user_id: str,
    current_user: schemas.CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Another user's profile. The full profile is only included when the relationship allows it."""
    db_user = get_active_user(db, user_id)
    if not db_user:
        raise NotFound("User not found", code="user_not_found")

    if user_id == current_user.id:
        relationship = Relationship.SELF
    else:
        relationship = relationship_for(ConnectionsCRUD.find_pair(db, current_user.id, user_id), current_user.id)
    capabilities = evaluate_capabilities(relationship)

    return UserDetailResponse(
        user=schemas.UserPublic.model_validate(db_user),
        relationship=relationship,
        capabilities=capabilities,
        profile=schemas.UserProfile.model_validate(db_user) if capabilities.can_view_full_profile else None,
    )
