from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from backend.core.config import settings
from backend.core.database import get_db
from backend.core.errors import VisionStorageError
from backend.core.security import create_access_token, get_password_hash, verify_password
from backend.models.user import User
from backend.models.vision import AnalysisType
from backend.routers.deps import get_current_user, get_vision_history, storage_http_error
from backend.schemas.auth import Token, UserCreate, UserResponse, UserStats
from backend.services.vision_history import VisionHistoryService

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    if db.query(User).filter(User.username == user_in.username).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already registered",
        )

    new_user = User(
        username=user_in.username,
        hashed_password=get_password_hash(user_in.password),
        is_active=True,
    )

    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    return new_user


@router.post("/token", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
) -> Token:
    user = db.query(User).filter(User.username == form_data.username).first()

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    access_token = create_access_token(subject=user.id)

    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)) -> User:
    return current_user


@router.get("/me/stats", response_model=UserStats)
def get_current_user_stats(
    current_user: User = Depends(get_current_user),
    history: VisionHistoryService = Depends(get_vision_history),
) -> UserStats:
    try:
        counts = history.count_by_type(current_user.id)
    except VisionStorageError as e:
        raise storage_http_error(e)

    return UserStats(
        total_analyses=sum(counts.values()),
        object_detections=counts[AnalysisType.OBJECT_DETECTION],
        image_descriptions=counts[AnalysisType.IMAGE_DESCRIPTION],
        face_recognitions=counts[AnalysisType.FACE_RECOGNITION],
    )
