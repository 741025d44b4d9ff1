import firebase_admin
from firebase_admin import exceptions, messaging

from app.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)


def user_topic(user_id: str) -> str:
    return f"user_{user_id}"


def firebase_ready() -> bool:
    try:
        firebase_admin.get_app()
        return True
    except ValueError:
        return False


def send_to_user(user_id: str, title: str, body: str, data: dict | None = None) -> bool:
    """
    Push a notification to every device subscribed to the user's topic.

    Delivery is best effort: failures are logged and reported as False.
    """
    if not settings.PUSH_NOTIFICATIONS_ENABLED:
        return False
    if not firebase_ready():
        logger.warning(f"Firebase not initialized, skipping push to {user_id}")
        return False

    message = messaging.Message(
        topic=user_topic(user_id),
        notification=messaging.Notification(title=title, body=body),
        data={k: str(v) for k, v in (data or {}).items()},
    )
    try:
        message_id = messaging.send(message)
        logger.info(f"Push sent to {user_id}: {message_id}")
        return True
    except (exceptions.FirebaseError, ValueError) as e:
        logger.error(f"Push to {user_id} failed: {e}")
        return False


def notify_connection_accepted(requester_id: str, accepter_id: str, accepter_name: str) -> bool:
    """Tell the requester their friend request was accepted."""
    return send_to_user(
        requester_id,
        title="Friend request accepted",
        body=f"{accepter_name} accepted your friend request",
        data={"type": "connection_accepted", "user_id": accepter_id},
    )
