from sqlalchemy.orm import Session
from app.crud.connections import ConnectionsCRUD, utcnow
from app.crud.storage import storage_errors
from app.models import ChatMessage, UserConnection
from typing import List, Tuple


@storage_errors
def create_message(db: Session, connection: UserConnection, sender_id: str, content: str) -> ChatMessage:
    """Store a message on an accepted connection and bump its last_message_at."""
    now = utcnow()
    db_message = ChatMessage(
        connection_id=connection.id,
        sender_id=sender_id,
        recipient_id=connection.other_user_id(sender_id),
        content=content,
        created_at=now,
    )
    db.add(db_message)
    db.flush()
    ConnectionsCRUD.touch_last_message(db, connection, at=now)
    db.refresh(db_message)
    return db_message


@storage_errors
def get_conversation_messages(
    db: Session, connection_id: str, page: int = 1, page_size: int = 20
) -> Tuple[List[ChatMessage], int]:
    """Messages of one connection, newest first."""
    query = db.query(ChatMessage).filter(
        ChatMessage.connection_id == connection_id
    ).order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
    total = query.count()
    messages = query.offset((page - 1) * page_size).limit(page_size).all()
    return messages, total
