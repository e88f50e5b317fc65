from __future__ import annotations

from sqlalchemy import JSON, Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from backend.core.database import Base
from backend.models.types import UTCDateTime
from backend.models.user import new_id


class UserSession(Base):
    """A client usage session; analyses may point at one by id."""
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    start_time = Column(UTCDateTime(timezone=True), server_default=func.now(), nullable=False)
    end_time = Column(UTCDateTime(timezone=True), nullable=True)
    device_info = Column(JSON, nullable=True)

    owner = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("ix_user_sessions_user_start", "user_id", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<UserSession(id={self.id}, user_id={self.user_id}, active={self.is_active})>"

    @property
    def is_active(self) -> bool:
        return self.end_time is None
