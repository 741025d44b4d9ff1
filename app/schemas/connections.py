from pydantic import BaseModel, Field
from typing import Generic, List, Optional, TypeVar
from datetime import datetime
from enum import Enum
from math import ceil

from app.schemas.user import UserPublic, UserProfile

T = TypeVar("T")

class Relationship(str, Enum):
    """How a pair looks from one user's side. SENT and RECEIVED are both a stored 'pending'."""
    SELF = "self"
    NONE = "none"
    SENT = "sent"
    RECEIVED = "received"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    BLOCKED = "blocked"

class Capabilities(BaseModel):
    can_chat: bool = False
    can_send_request: bool = False
    can_view_full_profile: bool = False
    can_view_rides: bool = False
    can_view_groups: bool = False

class UserActionRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="ID of the other user")

class FriendRequestCreate(UserActionRequest):
    pass

class ConnectionResponse(BaseModel):
    id: str
    user_id: str
    connected_user_id: str
    initiated_by: str
    status: str
    relationship: Relationship
    created_at: datetime
    accepted_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    other_user: Optional[UserPublic] = None

class RelationshipStatusResponse(BaseModel):
    user_id: str
    status: Relationship
    capabilities: Capabilities
    connection_id: Optional[str] = None
    request_date: Optional[datetime] = None
    connection_date: Optional[datetime] = None
    blocked_by_me: bool = False

class ActionStatusResponse(BaseModel):
    message: str
    status: str

class Page(BaseModel, Generic[T]):
    items: List[T]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, items: List[T], total_count: int, page: int, page_size: int) -> "Page[T]":
        total_pages = ceil(total_count / page_size) if page_size else 0
        return cls(
            items=items,
            total_count=total_count,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

class UserSearchResult(UserPublic):
    relationship: Relationship = Relationship.NONE

class UserDetailResponse(BaseModel):
    """Another user's profile as the viewer is allowed to see it. ``profile`` is omitted without full-profile access."""
    user: UserPublic
    relationship: Relationship
    capabilities: Capabilities
    profile: Optional[UserProfile] = None
