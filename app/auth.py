from fastapi import Depends, HTTPException, Request, status, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth
from typing import Optional
from sqlalchemy.orm import Session
from app.cache import UserCache
from app.database import get_db
from app import crud, schemas
from app.utils.logger import get_logger

logger = get_logger(__name__)


def get_user_cache(request: Request) -> UserCache:
    return request.app.state.user_cache


def _load_user(db: Session, user_id: str) -> Optional[schemas.CurrentUser]:
    db_user = crud.get_user(db, user_id)
    if not db_user:
        return None
    return schemas.CurrentUser.model_validate(db_user)


def _resolve_firebase_user(db: Session, token: str) -> str:
    """Verify a Firebase ID token and return its uid, registering the user on first sight."""
    try:
        decoded_token = auth.verify_id_token(token)
    except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError) as firebase_error:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(firebase_error)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decoded_token.get("uid")
    if not crud.get_user(db, user_id):
        name = (decoded_token.get("name") or "").split(" ", 1)
        crud.create_user(
            db,
            user_id=user_id,
            email=decoded_token.get("email"),
            first_name=name[0],
            last_name=name[1] if len(name) > 1 else "",
            display_name=decoded_token.get("name"),
            is_verified=bool(decoded_token.get("email_verified")),
        )
        logger.info(f"Registered new user {user_id} from Firebase token")
    return user_id


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(HTTPBearer(auto_error=False)),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    db: Session = Depends(get_db),
    user_cache: UserCache = Depends(get_user_cache),
) -> schemas.CurrentUser:
    """
    Resolve the authenticated caller.

    Verifies a Firebase ID token when one is sent, otherwise trusts the
    X-User-ID header. The user record is read through the user cache.

    Raises:
        HTTPException: 401 if credentials are missing or invalid, or the account is deactivated
    """
    if credentials is None and x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Either Bearer authentication or X-User-ID header is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = _resolve_firebase_user(db, credentials.credentials) if credentials else x_user_id

    cached = user_cache.get_or_load(user_id, lambda: _load_user(db, user_id))
    if cached is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    current_user = schemas.CurrentUser(**cached)
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated",
        )

    # Lets the rate limiter key on the user instead of the client address
    request.state.user_id = current_user.id
    return current_user


async def require_verified(
    current_user: schemas.CurrentUser = Depends(get_current_user),
) -> schemas.CurrentUser:
    """Caller must have a verified account."""
    if not current_user.is_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account verification required",
        )
    return current_user
