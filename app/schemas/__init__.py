from app.schemas.user import UserPublic, UserProfile, UserResponse, UserUpdate, CurrentUser
from app.schemas.connections import (
    Relationship, Capabilities, UserActionRequest, FriendRequestCreate, ConnectionResponse,
    RelationshipStatusResponse, ActionStatusResponse, Page, UserSearchResult,
    UserDetailResponse
)
from app.schemas.message import MessageCreate, Message, Conversation

__all__ = [
    "UserPublic", "UserProfile", "UserResponse", "UserUpdate", "CurrentUser",
    "Relationship", "Capabilities", "UserActionRequest", "FriendRequestCreate", "ConnectionResponse",
    "RelationshipStatusResponse", "ActionStatusResponse", "Page", "UserSearchResult",
    "UserDetailResponse",
    "MessageCreate", "Message", "Conversation",
]
