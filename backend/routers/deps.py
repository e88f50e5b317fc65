from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from backend.core.database import get_db
from backend.core.errors import InvalidInput, NotFound, PersistenceFailure, VisionStorageError
from backend.core.security import decode_token
from backend.models.user import User
from backend.services.vision_history import VisionHistoryService
from backend.services.vision_storage import VisionStorageService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


async def get_current_user_or_none(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    db: Session = Depends(get_db),
) -> User | None:
    if not token:
        return None

    user_id = decode_token(token)
    if not user_id:
        return None

    user = db.query(User).filter(User.id == user_id).first()

    if user and not user.is_active:
        return None

    return user


async def get_current_user(
    user: User | None = Depends(get_current_user_or_none),
) -> User:
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_vision_storage(request: Request) -> VisionStorageService:
    return request.app.state.vision_storage


def get_vision_history(request: Request) -> VisionHistoryService:
    return request.app.state.vision_history


def storage_http_error(exc: VisionStorageError) -> HTTPException:
    """Translate a storage error into the HTTP error returned to the client."""
    if isinstance(exc, NotFound):
        return HTTPException(status.HTTP_404_NOT_FOUND, "Vision analysis not found")
    if isinstance(exc, InvalidInput):
        return HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    if isinstance(exc, PersistenceFailure):
        return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Could not access vision history")
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Vision storage error")
