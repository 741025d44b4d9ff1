# API Routers
from app.routers import users, friends, chat

__all__ = ["users", "friends", "chat"]
