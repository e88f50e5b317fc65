"""
Vision History - Database Models
"""

from .session import UserSession
from .user import User
from .vision import (
    AnalysisType,
    DetectedObject,
    FaceRecognition,
    ImageDescription,
    ObjectDetection,
    RecognizedFace,
    VisionAnalysis,
)

__all__ = [
    "AnalysisType",
    "DetectedObject",
    "FaceRecognition",
    "ImageDescription",
    "ObjectDetection",
    "RecognizedFace",
    "User",
    "UserSession",
    "VisionAnalysis",
]
