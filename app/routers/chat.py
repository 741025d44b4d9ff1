from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import crud
from app.auth import get_current_user
from app.crud.connections import ConnectionsCRUD
from app.database import get_db
from app.dependencies import Pagination
from app.errors import Forbidden, InvalidOperation, NotFound, SocialGraphError
from app.models import UserConnection
from app.schemas import ActionStatusResponse, Conversation, CurrentUser, Message, MessageCreate, Page, UserPublic
from app.services.policy import capabilities_between
from app.utils.logger import get_logger

router = APIRouter(
    prefix="/chat",
    tags=["chat"],
    responses={404: {"description": "Not found"}}
)

logger = get_logger(__name__)


def _chat_connection(db: Session, current_user_id: str, other_user_id: str) -> UserConnection:
    """The connection both users chat over. Raises unless the relationship allows chatting."""
    if current_user_id == other_user_id:
        raise InvalidOperation("Cannot chat with yourself", code="self_connection")
    if not crud.get_active_user(db, other_user_id):
        raise NotFound("User not found", code="user_not_found")

    connection = ConnectionsCRUD.find_pair(db, current_user_id, other_user_id)
    if not capabilities_between(connection, current_user_id, other_user_id).can_chat:
        raise Forbidden("You can only chat with your friends", code="chat_not_allowed")
    return connection


@router.get("/conversations", response_model=Page[Conversation])
async def get_conversations(
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Friends the current user can chat with, most recent conversation first. Archived ones are left out."""
    connections, total = ConnectionsCRUD.list_conversations(db, current_user.id, pagination.page, pagination.page_size)
    items = []
    for connection in connections:
        other = connection.connected_user if connection.user_id == current_user.id else connection.user
        items.append(Conversation(
            connection_id=connection.id,
            user=UserPublic.model_validate(other),
            last_message_at=connection.last_message_at,
            is_archived=connection.is_archived,
        ))
    return Page[Conversation].build(items, total, pagination.page, pagination.page_size)


@router.post("/{user_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(
    user_id: str,
    payload: MessageCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Send a message to a friend"""
    try:
        connection = _chat_connection(db, current_user.id, user_id)
        if connection.is_archived:
            ConnectionsCRUD.set_archived(db, connection, False)
        message = crud.create_message(db, connection, current_user.id, payload.content)
        logger.info(f"Message {message.id} sent: {current_user.id} -> {user_id}")
        return message
    except (HTTPException, SocialGraphError, SQLAlchemyError):
        raise
    except Exception as e:
        logger.error(f"Error in send_message: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{user_id}/messages", response_model=Page[Message])
async def get_messages(
    user_id: str,
    pagination: Pagination = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Messages exchanged with a friend, newest first"""
    connection = _chat_connection(db, current_user.id, user_id)
    messages, total = crud.get_conversation_messages(db, connection.id, pagination.page, pagination.page_size)
    return Page[Message].build(
        [Message.model_validate(m) for m in messages], total, pagination.page, pagination.page_size
    )


@router.post("/{user_id}/archive", response_model=ActionStatusResponse)
async def archive_conversation(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Hide a conversation from the conversation list until the next message"""
    connection = _chat_connection(db, current_user.id, user_id)
    ConnectionsCRUD.set_archived(db, connection, True)
    return ActionStatusResponse(message="Conversation archived", status="archived")


@router.delete("/{user_id}/archive", response_model=ActionStatusResponse)
async def unarchive_conversation(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Bring an archived conversation back to the conversation list"""
    connection = _chat_connection(db, current_user.id, user_id)
    ConnectionsCRUD.set_archived(db, connection, False)
    return ActionStatusResponse(message="Conversation unarchived", status="active")
