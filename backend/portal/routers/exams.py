from __future__ import annotations

import logging
from collections.abc import Callable
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query

from portal.core.security import get_current_student_id
from portal.schemas.exam import (
    ExamAnswerRequest,
    ExamConfigResponse,
    ExamConfigureRequest,
    ExamFeedbackItem,
    ExamOptionsResponse,
    ExamQuestionPublic,
    ExamResultResponse,
    ExamStateResponse,
    TrackOption,
)
from portal.services.exam_engine import ExamEngine, build_config
from portal.services.exam_errors import ExamError
from portal.services.exam_types import (
    DURATION_PRESETS,
    ExamConfig,
    ExamResult,
    Grade,
    allowed_tracks,
    requires_track,
)
from portal.services.grading_source import LLMGradingSource
from portal.services.question_source import LLMQuestionSource
from portal.services.result_persister import SqlResultPersister

log = logging.getLogger(__name__)

router = APIRouter(prefix="/exams", tags=["exams"])

_STATUS_BY_KIND = {
    "config": 422,
    "answer": 422,
    "phase": 409,
    "stale": 409,
    "generation": 502,
    "grading": 502,
    "persistence": 500,
}


def build_engine(student_id: str) -> ExamEngine:
    return ExamEngine(
        student_id=student_id,
        question_source=LLMQuestionSource(),
        grading_source=LLMGradingSource(),
        persister=SqlResultPersister(),
    )


class ExamEngineRegistry:
    """One engine per student, kept for the lifetime of the process."""

    def __init__(self, factory: Callable[[str], ExamEngine] | None = None):
        self._factory = factory or build_engine
        self._engines: dict[str, ExamEngine] = {}

    def get(self, student_id: str) -> ExamEngine:
        engine = self._engines.get(student_id)
        if engine is None:
            engine = self._factory(student_id)
            self._engines[student_id] = engine
        return engine

    def discard(self, student_id: str) -> None:
        engine = self._engines.pop(student_id, None)
        if engine is not None:
            engine.reset()

    def student_ids(self) -> list[str]:
        return list(self._engines)

    def __len__(self) -> int:
        return len(self._engines)


registry = ExamEngineRegistry()


async def get_exam_engine(student_id: str = Depends(get_current_student_id)) -> ExamEngine:
    return registry.get(student_id)


def _raise_http(e: ExamError) -> NoReturn:
    status_code = _STATUS_BY_KIND.get(e.kind, 400)
    if status_code >= 500:
        log.warning("exam request failed kind=%s err=%s", e.kind, e)
    raise HTTPException(
        status_code=status_code,
        detail={"error_code": f"exam_{e.kind}", "error_message": str(e)},
    ) from e


def _config_out(config: ExamConfig) -> ExamConfigResponse:
    return ExamConfigResponse(
        grade=config.grade.value,
        grade_label=config.grade.label,
        track=(config.track.value if config.track else None),
        track_label=(config.track.label if config.track else None),
        question_count=config.question_count,
        time_limit_minutes=config.time_limit_minutes,
    )


def _result_out(result: ExamResult) -> ExamResultResponse:
    return ExamResultResponse(
        score=result.score,
        correct=result.correct,
        total=result.total,
        fraction=result.fraction,
        duration_seconds=result.duration_seconds,
        track=(result.track.value if result.track else None),
        feedback=[
            ExamFeedbackItem(
                question_text=f.question_text,
                your_answer=f.student_answer,
                correct_answer=f.correct_answer,
                explanation=f.explanation,
            )
            for f in result.feedback
        ],
        reported_score=result.reported_score,
        score_mismatch=result.score_mismatch,
    )


def _state_out(engine: ExamEngine) -> ExamStateResponse:
    session = engine.session
    return ExamStateResponse(
        phase=engine.phase.value,
        attempt_id=session.attempt_id,
        config=(_config_out(engine.config) if engine.config else None),
        remaining_seconds=engine.remaining_seconds,
        # Correct answers stay server-side.
        questions=[ExamQuestionPublic(id=q.id, question_text=q.text, options=list(q.options)) for q in engine.questions],
        answers=engine.answers,
        grading=engine.grading,
        result=(_result_out(engine.result) if engine.result else None),
        record_id=(str(session.record_id) if session.record_id else None),
        persistence_warning=engine.persistence_warning,
        last_error=engine.last_error,
    )


@router.get("/options", response_model=ExamOptionsResponse)
def exam_options(grade: str = Query(...)):
    try:
        g = Grade.parse(grade)
    except ExamError as e:
        _raise_http(e)
    return ExamOptionsResponse(
        grade=g.value,
        grade_label=g.label,
        requires_track=requires_track(g),
        tracks=[TrackOption(value=t.value, label=t.label) for t in allowed_tracks(g)],
        duration_presets=dict(DURATION_PRESETS),
    )


@router.get("/state", response_model=ExamStateResponse)
async def exam_state(engine: ExamEngine = Depends(get_exam_engine)):
    return _state_out(engine)


@router.post("/configure", response_model=ExamStateResponse)
async def exam_configure(payload: ExamConfigureRequest, engine: ExamEngine = Depends(get_exam_engine)):
    try:
        config = build_config(
            grade=payload.grade,
            track=payload.track,
            time_limit_minutes=payload.time_limit_minutes,
            question_count=payload.question_count,
        )
        engine.configure(config)
    except ExamError as e:
        _raise_http(e)
    return _state_out(engine)


@router.post("/start", response_model=ExamStateResponse)
async def exam_start(engine: ExamEngine = Depends(get_exam_engine)):
    try:
        await engine.start_generation()
    except ExamError as e:
        _raise_http(e)
    return _state_out(engine)


@router.post("/answers", response_model=ExamStateResponse)
async def exam_answer(payload: ExamAnswerRequest, engine: ExamEngine = Depends(get_exam_engine)):
    try:
        engine.record_answer(payload.question_id, payload.option_index)
    except ExamError as e:
        _raise_http(e)
    return _state_out(engine)


@router.post("/finish", response_model=ExamStateResponse)
async def exam_finish(engine: ExamEngine = Depends(get_exam_engine)):
    try:
        await engine.finish(origin="manual")
    except ExamError as e:
        _raise_http(e)
    return _state_out(engine)


@router.post("/reset", response_model=ExamStateResponse)
async def exam_reset(engine: ExamEngine = Depends(get_exam_engine)):
    engine.reset()
    return _state_out(engine)
