"""
Vision History - Pydantic Schemas
"""

from .auth import (
    Token,
    UserCreate,
    UserResponse,
    UserStats,
)
from .session import (
    SessionCreate,
    SessionResponse,
    SessionSummary,
)
from .vision import (
    BoundingBox,
    DetectedObjectIn,
    FaceRecognitionSubmission,
    HistoryPageResponse,
    HistoryPagination,
    ImageDescriptionSubmission,
    ObjectDetectionSubmission,
    RecognizedFaceIn,
    VisionAnalysisResponse,
)

__all__ = [
    "BoundingBox",
    "DetectedObjectIn",
    "FaceRecognitionSubmission",
    "HistoryPageResponse",
    "HistoryPagination",
    "ImageDescriptionSubmission",
    "ObjectDetectionSubmission",
    "RecognizedFaceIn",
    "SessionCreate",
    "SessionResponse",
    "SessionSummary",
    "Token",
    "UserCreate",
    "UserResponse",
    "UserStats",
    "VisionAnalysisResponse",
]
