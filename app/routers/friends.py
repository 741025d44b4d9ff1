from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.auth import get_current_user, require_verified
from app.config import settings
from app.database import get_db
from app.dependencies import Pagination, get_connection_service
from app.errors import SocialGraphError
from app.middleware.rate_limit import rate_limit_friend_request
from app.models.connection import UserConnection
from app.schemas.connections import (
    ActionStatusResponse, ConnectionResponse, FriendRequestCreate, Page, RelationshipStatusResponse,
    UserActionRequest
)
from app.schemas.user import CurrentUser, UserPublic
from app.services import social
from app.services.connections import ConnectionService
from app.services.notifications import notify_connection_accepted
from app.services.policy import relationship_for
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/friends", tags=["friends"])


def connection_response(connection: UserConnection, viewer_id: str) -> ConnectionResponse:
    """Serialize a connection as seen by ``viewer_id``, with the other user's public profile."""
    other = connection.connected_user if connection.user_id == viewer_id else connection.user
    return ConnectionResponse(
        id=connection.id,
        user_id=connection.user_id,
        connected_user_id=connection.connected_user_id,
        initiated_by=connection.initiated_by,
        status=connection.status,
        relationship=relationship_for(connection, viewer_id),
        created_at=connection.created_at,
        accepted_at=connection.accepted_at,
        last_message_at=connection.last_message_at,
        other_user=UserPublic.model_validate(other) if other else None,
    )


def _connection_page(service: ConnectionService, user_id: str, relationship: str, pagination: Pagination):
    connections, total = service.list_connections(user_id, relationship, pagination.page, pagination.page_size)
    return Page[ConnectionResponse].build(
        [connection_response(c, user_id) for c in connections], total, pagination.page, pagination.page_size
    )


def _user_page(users, total: int, pagination: Pagination):
    return Page[UserPublic].build(
        [UserPublic.model_validate(u) for u in users], total, pagination.page, pagination.page_size
    )


@router.post("/request", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
@rate_limit_friend_request
async def send_friend_request(
    request: Request,
    payload: FriendRequestCreate,
    current_user: CurrentUser = Depends(require_verified),
    service: ConnectionService = Depends(get_connection_service),
):
    """Send a friend request to another user"""
    try:
        connection = service.send_request(current_user.id, payload.user_id)
        return connection_response(connection, current_user.id)
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in send_friend_request: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/requests/{request_id}/accept", response_model=ConnectionResponse)
async def accept_friend_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(require_verified),
    db: Session = Depends(get_db),
):
    """Accept a friend request. The requester is notified after the response is sent."""
    def notify(connection: UserConnection):
        background_tasks.add_task(
            notify_connection_accepted, connection.initiated_by, current_user.id, current_user.name
        )

    try:
        service = ConnectionService(db, on_accepted=notify)
        connection = service.respond(request_id, current_user.id, accept=True)
        return connection_response(connection, current_user.id)
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in accept_friend_request: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/requests/{request_id}/reject", response_model=ActionStatusResponse)
async def reject_friend_request(
    request_id: str,
    current_user: CurrentUser = Depends(require_verified),
    service: ConnectionService = Depends(get_connection_service),
):
    """Reject a friend request"""
    try:
        service.respond(request_id, current_user.id, accept=False)
        return ActionStatusResponse(message="Friend request rejected successfully", status="rejected")
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in reject_friend_request: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/requests/{request_id}", response_model=ActionStatusResponse)
async def cancel_friend_request(
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Cancel a sent friend request"""
    try:
        service.cancel(request_id, current_user.id)
        return ActionStatusResponse(message="Friend request cancelled successfully", status="cancelled")
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in cancel_friend_request: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/block", response_model=ActionStatusResponse)
async def block_user(
    payload: UserActionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Block a user. Any friendship or pending request between the two is replaced by the block."""
    try:
        service.block(current_user.id, payload.user_id)
        return ActionStatusResponse(message="User blocked successfully", status="blocked")
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in block_user: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/unblock", response_model=ActionStatusResponse)
async def unblock_user(
    payload: UserActionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Unblock a user you blocked"""
    try:
        service.unblock(current_user.id, payload.user_id)
        return ActionStatusResponse(message="User unblocked successfully", status="unblocked")
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in unblock_user: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/status/{user_id}", response_model=RelationshipStatusResponse)
async def get_relationship_status(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Relationship with another user and what it allows"""
    return service.get_status(current_user.id, user_id)


@router.get("/list", response_model=Page[ConnectionResponse])
async def get_connections(
    connection_status: str = Query("accepted", alias="status", description="accepted, sent, received, rejected or blocked"),
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """List the current user's connections in one status"""
    try:
        return _connection_page(service, current_user.id, connection_status, pagination)
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in get_connections: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/requests", response_model=Page[ConnectionResponse])
async def get_friend_requests(
    request_type: str = Query("received", alias="type", pattern="^(received|sent)$"),
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Pending friend requests received by, or sent by, the current user"""
    return _connection_page(service, current_user.id, request_type, pagination)


@router.get("/blocked", response_model=Page[ConnectionResponse])
async def get_blocked_users(
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Users the current user has blocked"""
    return _connection_page(service, current_user.id, "blocked", pagination)


@router.get("/mutual/{user_id}", response_model=Page[UserPublic])
async def get_mutual_friends(
    user_id: str,
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Friends the current user shares with another user"""
    try:
        users, total = social.mutual_friends(db, current_user.id, user_id, pagination.page, pagination.page_size)
        return _user_page(users, total, pagination)
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in get_mutual_friends: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/suggestions", response_model=Page[UserPublic])
async def get_friend_suggestions(
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """People the current user has no connection with yet"""
    users, total = social.suggestions(db, current_user.id, pagination.page, pagination.page_size)
    return _user_page(users, total, pagination)


@router.get("/search", response_model=Page[UserPublic])
async def search_friends(
    q: str = Query(..., max_length=settings.MAX_SEARCH_LENGTH, description="Name to search for"),
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search the current user's friends by name"""
    users, total = social.search_friends(db, current_user.id, q, pagination.page, pagination.page_size)
    return _user_page(users, total, pagination)


@router.delete("/{user_id}", response_model=ActionStatusResponse)
async def remove_friend(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: ConnectionService = Depends(get_connection_service),
):
    """Remove a friend"""
    try:
        service.remove(current_user.id, user_id)
        return ActionStatusResponse(message="Friend removed successfully", status="removed")
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in remove_friend: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
