"""
Vision History - History Query Service

Read side of the analysis store. The envelope's analysis_type decides which
result table is read for it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Sequence, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from backend.core.errors import InvalidInput, NotFound, PersistenceFailure
from backend.models.session import UserSession
from backend.models.vision import (
    VARIANT_MODELS,
    AnalysisType,
    FaceRecognition,
    ImageDescription,
    ObjectDetection,
    VisionAnalysis,
)
from backend.services.vision_storage import require_user_id

logger = logging.getLogger(__name__)

DEFAULT_MAX_LIMIT = 100

AnalysisResult = Union[ObjectDetection, ImageDescription, FaceRecognition]

HISTORY_ORDER = (VisionAnalysis.created_at.desc(), VisionAnalysis.id.desc())

_RESULT_ITEMS = {
    AnalysisType.OBJECT_DETECTION: ObjectDetection.detected_objects,
    AnalysisType.FACE_RECOGNITION: FaceRecognition.recognized_faces,
}


@dataclass
class AnalysisRecord:
    """An envelope together with its resolved result."""
    analysis: VisionAnalysis
    result: AnalysisResult
    session: UserSession | None = None

    @property
    def analysis_type(self) -> AnalysisType:
        return self.analysis.analysis_type

    @classmethod
    def from_result(cls, result: AnalysisResult) -> AnalysisRecord:
        return cls(analysis=result.vision_analysis, result=result)


@dataclass
class HistoryPage:
    items: list[AnalysisRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class VisionHistoryService:
    """Ownership-scoped reads of stored analyses."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        max_limit: int = DEFAULT_MAX_LIMIT,
    ) -> None:
        if max_limit < 1:
            raise ValueError("max_limit must be at least 1")
        self._session_factory = session_factory
        self.max_limit = max_limit

    def get_user_history(self, user_id: str, limit: int, offset: int = 0) -> HistoryPage:
        user_id = require_user_id(user_id)
        limit = self._check_limit(limit)
        offset = _check_offset(offset)

        with self._reading("user history") as db:
            owned = db.query(VisionAnalysis).filter(VisionAnalysis.user_id == user_id)
            total = owned.count()

            analyses: list[VisionAnalysis] = []
            if offset < total:
                analyses = owned.order_by(*HISTORY_ORDER).offset(offset).limit(limit).all()

            items = self._resolve(db, analyses)

        return HistoryPage(items=items, total=total, limit=limit, offset=offset)

    def get_session_history(self, session_id: str, user_id: str | None = None) -> list[AnalysisRecord]:
        """All analyses tagged with a session, newest first. Session sets are small: no paging."""
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidInput("session_id is required")

        with self._reading("session history") as db:
            query = db.query(VisionAnalysis).filter(VisionAnalysis.session_id == session_id)
            if user_id is not None:
                query = query.filter(VisionAnalysis.user_id == require_user_id(user_id))
            return self._resolve(db, query.order_by(*HISTORY_ORDER).all())

    def get_analysis_by_id(self, analysis_id: str, requesting_user_id: str) -> AnalysisRecord:
        requesting_user_id = require_user_id(requesting_user_id)
        if not isinstance(analysis_id, str) or not analysis_id:
            raise NotFound(f"Analysis {analysis_id!r} not found")

        with self._reading("analysis") as db:
            analysis = db.get(VisionAnalysis, analysis_id)

            # Someone else's record looks exactly like a missing one.
            if analysis is None or analysis.user_id != requesting_user_id:
                raise NotFound(f"Analysis {analysis_id!r} not found")

            return self._resolve(db, [analysis])[0]

    def count_by_type(self, user_id: str) -> dict[AnalysisType, int]:
        user_id = require_user_id(user_id)

        with self._reading("analysis counts") as db:
            rows = (
                db.query(VisionAnalysis.analysis_type, func.count(VisionAnalysis.id))
                .filter(VisionAnalysis.user_id == user_id)
                .group_by(VisionAnalysis.analysis_type)
                .all()
            )

        counts = {analysis_type: count for analysis_type, count in rows}
        return {t: counts.get(t, 0) for t in AnalysisType}

    def _check_limit(self, limit: Any) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidInput(f"limit must be an integer, got {limit!r}")
        if limit < 1:
            raise InvalidInput(f"limit must be positive, got {limit}")
        if limit > self.max_limit:
            logger.debug("Clamping history limit %d to %d", limit, self.max_limit)
            return self.max_limit
        return limit

    @contextmanager
    def _reading(self, what: str) -> Iterator[Session]:
        # One transaction per read so the envelope and result queries agree.
        try:
            with self._session_factory.begin() as db:
                yield db
        except SQLAlchemyError as e:
            logger.exception("Failed to read %s", what)
            raise PersistenceFailure(f"Failed to fetch {what}: {e}") from e

    def _resolve(self, db: Session, analyses: Sequence[VisionAnalysis]) -> list[AnalysisRecord]:
        if not analyses:
            return []

        ids_by_type: dict[AnalysisType, list[str]] = defaultdict(list)
        for analysis in analyses:
            ids_by_type[analysis.analysis_type].append(analysis.id)

        results: dict[str, AnalysisResult] = {}
        for analysis_type, ids in ids_by_type.items():
            model = VARIANT_MODELS[analysis_type]
            query = db.query(model).filter(model.vision_analysis_id.in_(ids))
            if analysis_type in _RESULT_ITEMS:
                query = query.options(selectinload(_RESULT_ITEMS[analysis_type]))
            for result in query.all():
                results[result.vision_analysis_id] = result

        session_ids = {a.session_id for a in analyses if a.session_id}
        sessions: dict[str, UserSession] = {}
        if session_ids:
            sessions = {
                s.id: s for s in db.query(UserSession).filter(UserSession.id.in_(session_ids)).all()
            }

        records = []
        for analysis in analyses:
            result = results.get(analysis.id)
            if result is None:
                logger.error(
                    "Analysis %s is tagged %s but has no stored result",
                    analysis.id, analysis.analysis_type.value,
                )
                raise PersistenceFailure(f"Analysis {analysis.id} has no stored result")
            records.append(AnalysisRecord(
                analysis=analysis,
                result=result,
                session=sessions.get(analysis.session_id) if analysis.session_id else None,
            ))
        return records


def _check_offset(offset: Any) -> int:
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise InvalidInput(f"offset must be a non-negative integer, got {offset!r}")
    return offset
