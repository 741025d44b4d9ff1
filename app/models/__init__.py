from app.database import Base
from app.models.user import User
from app.models.connection import UserConnection, ConnectionStatus
from app.models.message import ChatMessage

__all__ = ["Base", "User", "UserConnection", "ConnectionStatus", "ChatMessage"]
