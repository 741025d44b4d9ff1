from app.crud.user import (
    get_user,
    get_active_user,
    create_user,
    update_user_fields,
    deactivate_user,
    search_users,
)
from app.crud.message import (
    create_message,
    get_conversation_messages,
)
from app.crud.connections import ConnectionsCRUD, pair_key

__all__ = [
    # User operations
    "get_user",
    "get_active_user",
    "create_user",
    "update_user_fields",
    "deactivate_user",
    "search_users",

    # Chat message operations
    "create_message",
    "get_conversation_messages",

    # Connection store
    "ConnectionsCRUD",
    "pair_key",
]
