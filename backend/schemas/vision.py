"""
Vision History - Analysis Schemas

Submission models describe inference results as they arrive from the
inference collaborators; response models describe stored history.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from backend.models.vision import AnalysisType
from backend.schemas.session import SessionSummary

if TYPE_CHECKING:
    from backend.services.vision_history import AnalysisRecord, HistoryPage


class BoundingBox(BaseModel):
    model_config = ConfigDict(from_attributes=True, allow_inf_nan=False)

    x_min: float
    y_min: float
    x_max: float
    y_max: float


class DetectedObjectIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    label: str = Field(min_length=1, max_length=255)
    confidence: float = Field(ge=0.0, le=1.0)
    bounding_box: BoundingBox
    attributes: dict[str, Any] | None = None


class RecognizedFaceIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    person_id: str | None = Field(default=None, max_length=255)
    person_name: str | None = Field(default=None, max_length=255)
    confidence: float
    bounding_box: BoundingBox | None = None
    attributes: dict[str, Any] | None = None


class ObjectDetectionSubmission(BaseModel):
    model_config = ConfigDict(protected_namespaces=(), allow_inf_nan=False)

    model_name: str = Field(min_length=1, max_length=255)
    model_settings: dict[str, Any] = Field(default_factory=dict)
    detections: list[DetectedObjectIn] = Field(default_factory=list)
    processing_time_ms: int = Field(ge=0)


class ImageDescriptionSubmission(BaseModel):
    model_config = ConfigDict(protected_namespaces=(), allow_inf_nan=False)

    model_name: str = Field(min_length=1, max_length=255)
    prompt: str
    max_new_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0)
    description: str = Field(description="Empty string means nothing was generated")
    processing_time_ms: int = Field(ge=0)


class FaceRecognitionSubmission(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    threshold: float
    recognized_faces: list[RecognizedFaceIn] = Field(default_factory=list)
    processing_time_ms: int = Field(ge=0)


class DetectedObjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    label: str
    confidence: float
    bounding_box: BoundingBox
    attributes: dict[str, Any] | None = None


class ObjectDetectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    model_name: str
    model_settings: dict[str, Any] | None = None
    processing_time_ms: int
    detected_objects: list[DetectedObjectResponse] = Field(default_factory=list)


class ImageDescriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    model_name: str
    prompt: str
    max_new_tokens: int | None = None
    temperature: float | None = None
    description: str
    processing_time_ms: int


class RecognizedFaceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    person_id: str | None = None
    person_name: str | None = None
    confidence: float
    bounding_box: BoundingBox | None = None
    attributes: dict[str, Any] | None = None
    is_matched: bool


class FaceRecognitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    threshold: float
    processing_time_ms: int
    recognized_faces: list[RecognizedFaceResponse] = Field(default_factory=list)


class AnalysisEnvelopeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    session_id: str | None = None
    analysis_type: AnalysisType
    image_hash: str
    image_format: str | None = None
    file_name: str | None = None
    created_at: datetime


_RESULT_FIELDS: dict[AnalysisType, tuple[str, type[BaseModel]]] = {
    AnalysisType.OBJECT_DETECTION: ("object_detection", ObjectDetectionResponse),
    AnalysisType.IMAGE_DESCRIPTION: ("image_description", ImageDescriptionResponse),
    AnalysisType.FACE_RECOGNITION: ("face_recognition", FaceRecognitionResponse),
}


class VisionAnalysisResponse(AnalysisEnvelopeResponse):
    """Envelope plus exactly one populated result field."""

    object_detection: ObjectDetectionResponse | None = None
    image_description: ImageDescriptionResponse | None = None
    face_recognition: FaceRecognitionResponse | None = None
    session: SessionSummary | None = None

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> VisionAnalysisResponse:
        # Built field by field: the ORM envelope is detached and its
        # variant relationships are never loaded.
        envelope = AnalysisEnvelopeResponse.model_validate(record.analysis)
        field_name, result_model = _RESULT_FIELDS[envelope.analysis_type]

        return cls(
            **envelope.model_dump(),
            **{field_name: result_model.model_validate(record.result)},
            session=SessionSummary.model_validate(record.session) if record.session else None,
        )


class HistoryPagination(BaseModel):
    total: int = Field(ge=0)
    limit: int = Field(ge=1)
    offset: int = Field(ge=0)
    has_more: bool


class HistoryPageResponse(BaseModel):
    data: list[VisionAnalysisResponse]
    pagination: HistoryPagination

    @classmethod
    def from_page(cls, page: HistoryPage) -> HistoryPageResponse:
        return cls(
            data=[VisionAnalysisResponse.from_record(r) for r in page.items],
            pagination=HistoryPagination(
                total=page.total,
                limit=page.limit,
                offset=page.offset,
                has_more=page.has_more,
            ),
        )
