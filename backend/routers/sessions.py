from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.core.database import get_db
from backend.models.session import UserSession
from backend.models.user import User
from backend.routers.deps import get_current_user
from backend.schemas.session import SessionCreate, SessionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def get_owned_session(db: Session, session_id: str, owner: User) -> UserSession:
    user_session = db.query(UserSession).filter(
        UserSession.id == session_id,
        UserSession.user_id == owner.id,
    ).first()

    if not user_session:
        raise HTTPException(404, "Session not found")

    return user_session


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def start_session(
    req: SessionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserSession:
    user_session = UserSession(
        user_id=current_user.id,
        start_time=datetime.now(timezone.utc),
        device_info=req.device_info or {},
    )
    db.add(user_session)
    db.commit()
    db.refresh(user_session)

    logger.info("Session %s started for user %s", user_session.id, current_user.id)
    return user_session


@router.get("", response_model=list[SessionResponse])
def list_sessions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[UserSession]:
    return db.query(UserSession).filter(
        UserSession.user_id == current_user.id
    ).order_by(UserSession.start_time.desc()).all()


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserSession:
    return get_owned_session(db, session_id, current_user)


@router.post("/{session_id}/end", response_model=SessionResponse)
def end_session(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserSession:
    user_session = get_owned_session(db, session_id, current_user)

    if user_session.end_time is not None:
        raise HTTPException(400, "Session already ended")

    user_session.end_time = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user_session)

    return user_session
