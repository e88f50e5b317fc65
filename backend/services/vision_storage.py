"""
Vision History - Analysis Record Store

Writes one analysis (envelope, typed result, result items) per transaction.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.core.errors import InvalidInput, PersistenceFailure
from backend.models.types import as_utc
from backend.models.vision import (
    AnalysisType,
    DetectedObject,
    FaceRecognition,
    ImageDescription,
    ObjectDetection,
    RecognizedFace,
    VisionAnalysis,
    utcnow,
)
from backend.schemas.vision import DetectedObjectIn, RecognizedFaceIn
from backend.services.fingerprint import fingerprint

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
ItemT = TypeVar("ItemT", bound=BaseModel)


def require_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInput("user_id is required")
    return user_id


def _require_text(name: str, value: Any, *, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        raise InvalidInput(f"{name} must be a string, got {type(value).__name__}")
    if not allow_empty and not value.strip():
        raise InvalidInput(f"{name} must not be empty")
    return value


def _require_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidInput(f"{name} must be a finite number, got {value!r}")
    return float(value)


def _require_count(name: str, value: Any, *, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidInput(f"{name} must be an integer >= {minimum}, got {value!r}")
    return value


def _coerce_items(model: type[ItemT], items: Iterable[Any] | None, name: str) -> list[ItemT]:
    if items is None:
        return []

    coerced: list[ItemT] = []
    for index, item in enumerate(items):
        if isinstance(item, model):
            coerced.append(item)
            continue
        try:
            coerced.append(model.model_validate(item))
        except ValidationError as e:
            raise InvalidInput(f"{name}[{index}] is malformed: {e}") from e
    return coerced


class VisionStorageService:
    """Persists analysis results; one instance per storage engine."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or utcnow

    def save_object_detection(
        self,
        user_id: str,
        session_id: str | None,
        image_bytes: bytes,
        file_name: str | None,
        image_format: str | None,
        model_name: str,
        model_settings: Mapping[str, Any] | None,
        detections: Iterable[DetectedObjectIn | Mapping[str, Any]] | None,
        processing_time_ms: int,
    ) -> ObjectDetection:
        user_id = require_user_id(user_id)
        model_name = _require_text("model_name", model_name)
        if model_settings is not None and not isinstance(model_settings, Mapping):
            raise InvalidInput("model_settings must be a mapping")
        items = _coerce_items(DetectedObjectIn, detections, "detections")

        variant = ObjectDetection(
            model_name=model_name,
            model_settings=dict(model_settings or {}),
            processing_time_ms=_require_count("processing_time_ms", processing_time_ms, minimum=0),
        )

        def add_detected_objects(db: Session) -> None:
            for item in items:
                db.add(DetectedObject(
                    object_detection_id=variant.id,
                    label=item.label,
                    confidence=item.confidence,
                    bounding_box=item.bounding_box.model_dump(),
                    attributes=item.attributes,
                ))

        return self._persist(
            analysis_type=AnalysisType.OBJECT_DETECTION,
            user_id=user_id,
            session_id=session_id,
            image_bytes=image_bytes,
            file_name=file_name,
            image_format=image_format,
            variant=variant,
            add_items=add_detected_objects,
            reload_items=lambda db: db.refresh(variant, ["detected_objects"]),
        )

    def save_image_description(
        self,
        user_id: str,
        session_id: str | None,
        image_bytes: bytes,
        file_name: str | None,
        image_format: str | None,
        model_name: str,
        prompt: str,
        max_new_tokens: int | None,
        temperature: float | None,
        description: str,
        processing_time_ms: int,
    ) -> ImageDescription:
        user_id = require_user_id(user_id)

        if temperature is not None:
            temperature = _require_number("temperature", temperature)
            if temperature < 0:
                raise InvalidInput(f"temperature must be >= 0, got {temperature!r}")

        variant = ImageDescription(
            model_name=_require_text("model_name", model_name),
            prompt=_require_text("prompt", prompt, allow_empty=True),
            max_new_tokens=(
                None if max_new_tokens is None
                else _require_count("max_new_tokens", max_new_tokens, minimum=1)
            ),
            temperature=temperature,
            description=_require_text("description", description, allow_empty=True),
            processing_time_ms=_require_count("processing_time_ms", processing_time_ms, minimum=0),
        )

        return self._persist(
            analysis_type=AnalysisType.IMAGE_DESCRIPTION,
            user_id=user_id,
            session_id=session_id,
            image_bytes=image_bytes,
            file_name=file_name,
            image_format=image_format,
            variant=variant,
        )

    def save_face_recognition(
        self,
        user_id: str,
        session_id: str | None,
        image_bytes: bytes,
        file_name: str | None,
        image_format: str | None,
        threshold: float,
        recognized_faces: Iterable[RecognizedFaceIn | Mapping[str, Any]] | None,
        processing_time_ms: int,
    ) -> FaceRecognition:
        user_id = require_user_id(user_id)
        items = _coerce_items(RecognizedFaceIn, recognized_faces, "recognized_faces")

        # Threshold range is the caller's policy; stored as given.
        variant = FaceRecognition(
            threshold=_require_number("threshold", threshold),
            processing_time_ms=_require_count("processing_time_ms", processing_time_ms, minimum=0),
        )

        def add_recognized_faces(db: Session) -> None:
            for item in items:
                db.add(RecognizedFace(
                    face_recognition_id=variant.id,
                    person_id=item.person_id,
                    person_name=item.person_name,
                    confidence=item.confidence,
                    bounding_box=item.bounding_box.model_dump() if item.bounding_box else None,
                    attributes=item.attributes,
                ))

        return self._persist(
            analysis_type=AnalysisType.FACE_RECOGNITION,
            user_id=user_id,
            session_id=session_id,
            image_bytes=image_bytes,
            file_name=file_name,
            image_format=image_format,
            variant=variant,
            add_items=add_recognized_faces,
            reload_items=lambda db: db.refresh(variant, ["recognized_faces"]),
        )

    def _persist(
        self,
        *,
        analysis_type: AnalysisType,
        user_id: str,
        session_id: str | None,
        image_bytes: bytes,
        file_name: str | None,
        image_format: str | None,
        variant: ObjectDetection | ImageDescription | FaceRecognition,
        add_items: Callable[[Session], None] | None = None,
        reload_items: Callable[[Session], None] | None = None,
    ) -> Any:
        if not image_bytes:
            raise InvalidInput("image_bytes must not be empty")
        image_hash = fingerprint(bytes(image_bytes))

        try:
            # begin() commits on success and rolls back on any exception,
            # cancellation included.
            with self._session_factory.begin() as db:
                analysis = VisionAnalysis(
                    user_id=user_id,
                    session_id=session_id or None,
                    analysis_type=analysis_type,
                    image_hash=image_hash,
                    image_format=image_format,
                    file_name=file_name,
                    created_at=as_utc(self._clock()),
                )
                db.add(analysis)
                db.flush()

                variant.vision_analysis = analysis
                variant.user_id = analysis.user_id
                db.add(variant)
                db.flush()

                if add_items is not None:
                    add_items(db)
                    db.flush()
                if reload_items is not None:
                    reload_items(db)
        except SQLAlchemyError as e:
            logger.exception("Failed to save %s for user %s", analysis_type.value, user_id)
            raise PersistenceFailure(
                f"Failed to save {analysis_type.value.lower()} results: {e}"
            ) from e

        logger.info("Saved %s analysis %s (result %s)", analysis_type.value, analysis.id, variant.id)
        return variant
