from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.db import session as session_module
from portal.models.exam_result import ExamResultRecord
from portal.services.exam_errors import PersistenceFailed
from portal.services.exam_types import ExamResult

log = logging.getLogger(__name__)


class ResultPersister(Protocol):
    async def save(self, *, student_id: str, result: ExamResult) -> uuid.UUID: ...


def result_to_record(*, student_id: str, result: ExamResult) -> ExamResultRecord:
    return ExamResultRecord(
        student_id=str(student_id),
        score=result.score,
        correct=int(result.correct),
        total=int(result.total),
        duration_seconds=int(result.duration_seconds),
        specialization=(result.track.value if result.track is not None else None),
        feedback=[item.as_dict() for item in result.feedback],
        reported_score=result.reported_score,
        score_mismatch=bool(result.score_mismatch),
    )


class SqlResultPersister:
    """Append one ``exam_results`` row per finished attempt."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory

    def _factory(self) -> Callable[[], Session]:
        # Resolved per call so a patched SessionLocal (tests, workers) is honoured.
        return self._session_factory or session_module.SessionLocal

    def _write(self, student_id: str, result: ExamResult) -> uuid.UUID:
        with self._factory()() as db:
            record = result_to_record(student_id=student_id, result=result)
            db.add(record)
            db.commit()
            return record.id

    async def save(self, *, student_id: str, result: ExamResult) -> uuid.UUID:
        try:
            record_id = await asyncio.to_thread(self._write, student_id, result)
        except SQLAlchemyError as e:
            log.warning("exam result not stored student=%s err=%s", student_id, type(e).__name__)
            raise PersistenceFailed("result could not be saved") from e

        log.info("exam result stored student=%s id=%s score=%s", student_id, record_id, result.score)
        return record_id
