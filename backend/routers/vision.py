from __future__ import annotations

import io
import logging
from typing import TypeVar

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.exceptions import RequestValidationError
from PIL import Image
from pydantic import BaseModel, ValidationError

from backend.core.config import settings
from backend.core.errors import VisionStorageError
from backend.models.user import User
from backend.routers.deps import (
    get_current_user,
    get_vision_history,
    get_vision_storage,
    storage_http_error,
)
from backend.schemas.vision import (
    FaceRecognitionSubmission,
    HistoryPageResponse,
    ImageDescriptionSubmission,
    ObjectDetectionSubmission,
    VisionAnalysisResponse,
)
from backend.services.vision_history import AnalysisRecord, AnalysisResult, VisionHistoryService
from backend.services.vision_storage import VisionStorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vision", tags=["Vision"])

SubmissionT = TypeVar("SubmissionT", bound=BaseModel)


class ImageUpload(BaseModel):
    file_name: str
    data: bytes
    image_format: str | None


def read_image_upload(file: UploadFile) -> ImageUpload:
    filename = (file.filename or "unknown").replace("\\", "/").split("/")[-1]

    if not settings.validate_file_extension(filename):
        raise HTTPException(400, f"Unsupported format: {filename}")

    data = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if not data:
        raise HTTPException(400, "No image data provided")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(413, f"Image exceeds {settings.MAX_UPLOAD_BYTES} bytes")

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
            detected = image.format
    except Exception as e:
        raise HTTPException(400, f"Invalid image '{filename}': {e}")

    image_format = detected.lower() if detected else None
    if image_format is None and file.content_type and file.content_type.startswith("image/"):
        image_format = file.content_type.split("/", 1)[1]

    return ImageUpload(file_name=filename, data=data, image_format=image_format)


def parse_submission(model: type[SubmissionT], raw: str) -> SubmissionT:
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))


def to_response(result: AnalysisResult) -> VisionAnalysisResponse:
    return VisionAnalysisResponse.from_record(AnalysisRecord.from_result(result))


@router.post(
    "/object-detection",
    response_model=VisionAnalysisResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_object_detection(
    image: UploadFile = File(...),
    result: str = Form(..., description="ObjectDetectionSubmission as JSON"),
    session_id: str | None = Form(default=None),
    current_user: User = Depends(get_current_user),
    storage: VisionStorageService = Depends(get_vision_storage),
) -> VisionAnalysisResponse:
    submission = parse_submission(ObjectDetectionSubmission, result)
    upload = read_image_upload(image)

    try:
        saved = storage.save_object_detection(
            current_user.id,
            session_id,
            upload.data,
            upload.file_name,
            upload.image_format,
            submission.model_name,
            submission.model_settings,
            submission.detections,
            submission.processing_time_ms,
        )
    except VisionStorageError as e:
        raise storage_http_error(e)

    return to_response(saved)


@router.post(
    "/image-description",
    response_model=VisionAnalysisResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_image_description(
    image: UploadFile = File(...),
    result: str = Form(..., description="ImageDescriptionSubmission as JSON"),
    session_id: str | None = Form(default=None),
    current_user: User = Depends(get_current_user),
    storage: VisionStorageService = Depends(get_vision_storage),
) -> VisionAnalysisResponse:
    submission = parse_submission(ImageDescriptionSubmission, result)
    upload = read_image_upload(image)

    try:
        saved = storage.save_image_description(
            current_user.id,
            session_id,
            upload.data,
            upload.file_name,
            upload.image_format,
            submission.model_name,
            submission.prompt,
            submission.max_new_tokens,
            submission.temperature,
            submission.description,
            submission.processing_time_ms,
        )
    except VisionStorageError as e:
        raise storage_http_error(e)

    return to_response(saved)


@router.post(
    "/face-recognition",
    response_model=VisionAnalysisResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_face_recognition(
    image: UploadFile = File(...),
    result: str = Form(..., description="FaceRecognitionSubmission as JSON"),
    session_id: str | None = Form(default=None),
    current_user: User = Depends(get_current_user),
    storage: VisionStorageService = Depends(get_vision_storage),
) -> VisionAnalysisResponse:
    submission = parse_submission(FaceRecognitionSubmission, result)
    upload = read_image_upload(image)

    try:
        saved = storage.save_face_recognition(
            current_user.id,
            session_id,
            upload.data,
            upload.file_name,
            upload.image_format,
            submission.threshold,
            submission.recognized_faces,
            submission.processing_time_ms,
        )
    except VisionStorageError as e:
        raise storage_http_error(e)

    return to_response(saved)


@router.get("/history", response_model=HistoryPageResponse)
def get_history(
    limit: int = settings.HISTORY_DEFAULT_LIMIT,
    offset: int = 0,
    current_user: User = Depends(get_current_user),
    history: VisionHistoryService = Depends(get_vision_history),
) -> HistoryPageResponse:
    try:
        page = history.get_user_history(current_user.id, limit, offset)
    except VisionStorageError as e:
        raise storage_http_error(e)

    return HistoryPageResponse.from_page(page)


@router.get("/history/session/{session_id}", response_model=list[VisionAnalysisResponse])
def get_session_history(
    session_id: str,
    current_user: User = Depends(get_current_user),
    history: VisionHistoryService = Depends(get_vision_history),
) -> list[VisionAnalysisResponse]:
    try:
        records = history.get_session_history(session_id, user_id=current_user.id)
    except VisionStorageError as e:
        raise storage_http_error(e)

    return [VisionAnalysisResponse.from_record(r) for r in records]


@router.get("/history/{analysis_id}", response_model=VisionAnalysisResponse)
def get_analysis(
    analysis_id: str,
    current_user: User = Depends(get_current_user),
    history: VisionHistoryService = Depends(get_vision_history),
) -> VisionAnalysisResponse:
    try:
        record = history.get_analysis_by_id(analysis_id, current_user.id)
    except VisionStorageError as e:
        raise storage_http_error(e)

    return VisionAnalysisResponse.from_record(record)
