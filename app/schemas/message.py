from pydantic import BaseModel, field_validator
from datetime import datetime
from typing import Optional

from app.schemas.user import UserPublic


class MessageCreate(BaseModel):
    content: str

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Message cannot be empty')
        if len(v) > 2000:
            raise ValueError('Message must be at most 2000 characters long')
        return v


class Message(BaseModel):
    id: str
    connection_id: str
    sender_id: str
    recipient_id: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class Conversation(BaseModel):
    connection_id: str
    user: UserPublic
    last_message_at: Optional[datetime] = None
    is_archived: bool = False
