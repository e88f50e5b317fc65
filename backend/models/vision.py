from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from backend.core.database import Base
from backend.models.types import UTCDateTime
from backend.models.user import new_id
from backend.services.fingerprint import DIGEST_LENGTH


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisType(str, enum.Enum):
    OBJECT_DETECTION = "OBJECT_DETECTION"
    IMAGE_DESCRIPTION = "IMAGE_DESCRIPTION"
    FACE_RECOGNITION = "FACE_RECOGNITION"


class VisionAnalysis(Base):
    """Envelope: who analysed which image, and with which kind of analysis."""
    __tablename__ = "vision_analyses"

    id = Column(String(36), primary_key=True, default=new_id)

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Weak reference: sessions may be missing or belong to nobody we know.
    session_id = Column(String(36), nullable=True, index=True)

    analysis_type = Column(
        Enum(AnalysisType, native_enum=False, length=32, validate_strings=True),
        nullable=False,
    )

    image_hash = Column(String(DIGEST_LENGTH), nullable=False, index=True)
    image_format = Column(String(32), nullable=True)
    file_name = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)

    owner = relationship("User", back_populates="analyses")

    object_detection = relationship(
        "ObjectDetection",
        back_populates="vision_analysis",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    image_description = relationship(
        "ImageDescription",
        back_populates="vision_analysis",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    face_recognition = relationship(
        "FaceRecognition",
        back_populates="vision_analysis",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_vision_analyses_user_created", "user_id", "created_at", "id"),
        Index("ix_vision_analyses_session_created", "session_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<VisionAnalysis(id={self.id}, type={self.analysis_type}, user_id={self.user_id})>"


class ObjectDetection(Base):
    __tablename__ = "object_detections"

    id = Column(String(36), primary_key=True, default=new_id)
    vision_analysis_id = Column(
        String(36),
        ForeignKey("vision_analyses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    # Copy of the envelope owner, for filtering without a join.
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    model_name = Column(String(255), nullable=False)
    model_settings = Column(JSON, nullable=True)
    processing_time_ms = Column(Integer, nullable=False)

    vision_analysis = relationship("VisionAnalysis", back_populates="object_detection")
    detected_objects = relationship(
        "DetectedObject",
        back_populates="object_detection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ObjectDetection(id={self.id}, model='{self.model_name}')>"


class DetectedObject(Base):
    __tablename__ = "detected_objects"

    id = Column(String(36), primary_key=True, default=new_id)
    object_detection_id = Column(
        String(36),
        ForeignKey("object_detections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    label = Column(String(255), nullable=False)
    confidence = Column(Float, nullable=False)
    bounding_box = Column(JSON, nullable=False)
    attributes = Column(JSON, nullable=True)

    object_detection = relationship("ObjectDetection", back_populates="detected_objects")

    def __repr__(self) -> str:
        return f"<DetectedObject(label='{self.label}', confidence={self.confidence})>"


class ImageDescription(Base):
    __tablename__ = "image_descriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    vision_analysis_id = Column(
        String(36),
        ForeignKey("vision_analyses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    model_name = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=False)
    max_new_tokens = Column(Integer, nullable=True)
    temperature = Column(Float, nullable=True)
    description = Column(Text, nullable=False)
    processing_time_ms = Column(Integer, nullable=False)

    vision_analysis = relationship("VisionAnalysis", back_populates="image_description")

    def __repr__(self) -> str:
        return f"<ImageDescription(id={self.id}, model='{self.model_name}')>"


class FaceRecognition(Base):
    __tablename__ = "face_recognitions"

    id = Column(String(36), primary_key=True, default=new_id)
    vision_analysis_id = Column(
        String(36),
        ForeignKey("vision_analyses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    threshold = Column(Float, nullable=False)
    processing_time_ms = Column(Integer, nullable=False)

    vision_analysis = relationship("VisionAnalysis", back_populates="face_recognition")
    recognized_faces = relationship(
        "RecognizedFace",
        back_populates="face_recognition",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<FaceRecognition(id={self.id}, threshold={self.threshold})>"


class RecognizedFace(Base):
    __tablename__ = "recognized_faces"

    id = Column(String(36), primary_key=True, default=new_id)
    face_recognition_id = Column(
        String(36),
        ForeignKey("face_recognitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    person_id = Column(String(255), nullable=True)
    person_name = Column(String(255), nullable=True)
    confidence = Column(Float, nullable=False)
    bounding_box = Column(JSON, nullable=True)
    attributes = Column(JSON, nullable=True)

    face_recognition = relationship("FaceRecognition", back_populates="recognized_faces")

    @property
    def is_matched(self) -> bool:
        return self.person_id is not None or self.person_name is not None

    def __repr__(self) -> str:
        return f"<RecognizedFace(person_id={self.person_id}, confidence={self.confidence})>"


VARIANT_MODELS: dict[AnalysisType, type] = {
    AnalysisType.OBJECT_DETECTION: ObjectDetection,
    AnalysisType.IMAGE_DESCRIPTION: ImageDescription,
    AnalysisType.FACE_RECOGNITION: FaceRecognition,
}
