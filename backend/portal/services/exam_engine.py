"""Timed assessment state machine.

One ``ExamEngine`` serves one student; each attempt lives in its own
``ExamSession`` so results of source calls that complete after a reset can be
recognised and dropped. All methods run on a single event loop: the
``finishing`` guard is checked and set before the first ``await`` of
``finish``, which is what makes a countdown expiry racing a manual finish
produce exactly one grading call.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from portal.core.config import settings
from portal.services.exam_countdown import ExamCountdown
from portal.services.exam_errors import (
    ExamAnswerError,
    ExamConfigError,
    ExamError,
    ExamPhaseError,
    GenerationFailed,
    GradingFailed,
    PersistenceFailed,
    StaleAttemptError,
)
from portal.services.exam_scoring import build_feedback, score_answers, scores_agree
from portal.services.exam_types import (
    DURATION_PRESETS,
    ExamConfig,
    ExamPhase,
    ExamResult,
    Grade,
    Question,
    Track,
    allowed_tracks,
    requires_track,
)
from portal.services.grading_source import GradingSource
from portal.services.question_source import QuestionSource
from portal.services.result_persister import ResultPersister

log = logging.getLogger(__name__)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def build_config(
    *,
    grade: Grade | str,
    track: Track | str | None = None,
    time_limit_minutes: int,
    question_count: int | None = None,
) -> ExamConfig:
    """Turn selection-screen input into an ExamConfig.

    Without an explicit question count the duration preset is used.
    """
    g = grade if isinstance(grade, Grade) else Grade.parse(grade)
    t: Track | None = None
    if track is not None and str(getattr(track, "value", track)).strip():
        t = track if isinstance(track, Track) else Track.parse(track)

    if question_count is None:
        if time_limit_minutes not in DURATION_PRESETS:
            raise ExamConfigError(f"no question count preset for a {time_limit_minutes}-minute exam")
        question_count = DURATION_PRESETS[time_limit_minutes]

    return ExamConfig(grade=g, track=t, question_count=question_count, time_limit_minutes=time_limit_minutes)


@dataclass
class ExamSession:
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    config: ExamConfig | None = None
    questions: list[Question] = field(default_factory=list)
    answers: dict[int, int] = field(default_factory=dict)
    frozen_answers: Mapping[int, int] | None = None
    started_at: float | None = None
    countdown: ExamCountdown | None = None
    finishing: bool = False
    grading: bool = False
    result: ExamResult | None = None
    record_id: uuid.UUID | None = None
    persistence_warning: str | None = None


class ExamEngine:
    def __init__(
        self,
        *,
        student_id: str,
        question_source: QuestionSource,
        grading_source: GradingSource,
        persister: ResultPersister | None = None,
        max_questions: int | None = None,
        max_minutes: int | None = None,
        tick_seconds: float | None = None,
        no_answer_label: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.student_id = str(student_id)
        self._question_source = question_source
        self._grading_source = grading_source
        self._persister = persister
        self._max_questions = int(max_questions if max_questions is not None else settings.exam_max_questions)
        self._max_minutes = int(max_minutes if max_minutes is not None else settings.exam_max_minutes)
        self._tick_seconds = tick_seconds
        self._no_answer_label = no_answer_label or settings.exam_no_answer_label
        self._clock = clock

        self._phase = ExamPhase.selection
        self._session = ExamSession()
        self._last_error: str | None = None

    # -- read-only views -------------------------------------------------

    @property
    def phase(self) -> ExamPhase:
        return self._phase

    @property
    def session(self) -> ExamSession:
        return self._session

    @property
    def config(self) -> ExamConfig | None:
        return self._session.config

    @property
    def questions(self) -> tuple[Question, ...]:
        return tuple(self._session.questions)

    @property
    def answers(self) -> dict[int, int]:
        return dict(self._session.answers)

    @property
    def remaining_seconds(self) -> int | None:
        countdown = self._session.countdown
        if countdown is None:
            return None
        return countdown.remaining

    @property
    def grading(self) -> bool:
        return self._session.grading

    @property
    def result(self) -> ExamResult | None:
        return self._session.result

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def persistence_warning(self) -> str | None:
        return self._session.persistence_warning

    # -- transitions -----------------------------------------------------

    def _set_phase(self, phase: ExamPhase, *, reason: str) -> None:
        previous = self._phase
        self._phase = phase
        log.info(
            "exam phase %s -> %s student=%s attempt=%s (%s)",
            previous.value,
            phase.value,
            self.student_id,
            self._session.attempt_id,
            reason,
            extra={
                "event_type": "exam_phase_transition",
                "student_id": self.student_id,
                "attempt_id": self._session.attempt_id,
                "from_phase": previous.value,
                "to_phase": phase.value,
                "reason": reason,
            },
        )

    def _require_phase(self, phase: ExamPhase, operation: str) -> None:
        if self._phase is not phase:
            raise ExamPhaseError(f"{operation} is not allowed in phase {self._phase.value}")

    def _abandon(self, session: ExamSession, error: ExamError) -> None:
        # Nothing from the failed attempt survives except its configuration.
        if session.countdown is not None:
            session.countdown.disarm()
        self._session = ExamSession(config=session.config)
        self._last_error = str(error)
        self._set_phase(ExamPhase.selection, reason=f"{error.kind} failed")

    def configure(self, config: ExamConfig) -> ExamConfig:
        self._require_phase(ExamPhase.selection, "configure")

        if not isinstance(config.grade, Grade):
            raise ExamConfigError("grade is required")
        if not _is_int(config.question_count) or not 1 <= config.question_count <= self._max_questions:
            raise ExamConfigError(f"question count must be between 1 and {self._max_questions}")
        if not _is_int(config.time_limit_minutes) or not 1 <= config.time_limit_minutes <= self._max_minutes:
            raise ExamConfigError(f"time limit must be between 1 and {self._max_minutes} minutes")

        if requires_track(config.grade):
            if config.track is None:
                raise ExamConfigError(f"a track is required for grade {config.grade.value}")
            if config.track not in allowed_tracks(config.grade):
                raise ExamConfigError(f"track {config.track.value} is not offered for grade {config.grade.value}")
        elif config.track is not None:
            config = replace(config, track=None)

        self._session.config = config
        self._last_error = None
        log.info(
            "exam configured student=%s grade=%s track=%s count=%d minutes=%d",
            self.student_id,
            config.grade.value,
            getattr(config.track, "value", None),
            config.question_count,
            config.time_limit_minutes,
        )
        return config

    async def start_generation(self) -> list[Question]:
        self._require_phase(ExamPhase.selection, "start_generation")
        session = self._session
        config = session.config
        if config is None:
            raise ExamConfigError("configure the exam before starting it")

        self._set_phase(ExamPhase.generating, reason="generation requested")
        try:
            questions = await self._question_source.generate(
                grade=config.grade,
                track=config.track,
                count=config.question_count,
            )
        except GenerationFailed as e:
            if self._session is not session:
                raise StaleAttemptError("attempt was reset while questions were generated") from e
            self._abandon(session, e)
            raise
        except Exception as e:
            log.exception("question source raised unexpectedly student=%s", self.student_id)
            failure = GenerationFailed("question source failed unexpectedly")
            if self._session is not session:
                raise StaleAttemptError("attempt was reset while questions were generated") from e
            self._abandon(session, failure)
            raise failure from e

        if self._session is not session:
            log.info("discarding questions for a reset attempt=%s", session.attempt_id)
            raise StaleAttemptError("attempt was reset while questions were generated")

        if len(questions) != config.question_count:
            failure = GenerationFailed(f"expected {config.question_count} questions, got {len(questions)}")
            self._abandon(session, failure)
            raise failure

        session.questions = [replace(q, id=i) for i, q in enumerate(questions)]
        session.answers = {}
        self._last_error = None
        session.started_at = self._clock()
        session.countdown = ExamCountdown(
            config.time_limit_seconds,
            lambda: self._expire(session),
            tick_seconds=self._tick_seconds,
            attempt_id=session.attempt_id,
        )
        self._set_phase(ExamPhase.active, reason=f"{len(session.questions)} questions ready")
        session.countdown.arm()
        return list(session.questions)

    def record_answer(self, question_id: int, option_index: int) -> None:
        session = self._session
        if self._phase is not ExamPhase.active or session.finishing:
            if session.finishing:
                log.warning(
                    "late answer rejected student=%s attempt=%s question=%s",
                    self.student_id,
                    session.attempt_id,
                    question_id,
                    extra={"event_type": "exam_late_answer", "attempt_id": session.attempt_id},
                )
            raise ExamPhaseError("answers are only accepted while the exam is running")

        if not _is_int(question_id) or not 0 <= question_id < len(session.questions):
            raise ExamAnswerError(f"unknown question id: {question_id!r}")
        question = session.questions[question_id]
        if not _is_int(option_index) or not 0 <= option_index < len(question.options):
            raise ExamAnswerError(f"option index {option_index!r} is out of range")

        session.answers[question_id] = option_index

    async def _expire(self, session: ExamSession) -> None:
        if self._session is not session or session.finishing:
            return
        try:
            await self.finish(origin="timeout")
        except ExamError as e:
            # Already reflected in last_error / phase; nobody awaits the countdown.
            log.warning("timed-out attempt could not be graded attempt=%s err=%s", session.attempt_id, e)

    async def finish(self, *, origin: str = "manual") -> ExamResult | None:
        session = self._session
        if session.finishing:
            log.warning(
                "finish(%s) ignored, attempt already finishing student=%s attempt=%s",
                origin,
                self.student_id,
                session.attempt_id,
                extra={"event_type": "exam_double_finish", "attempt_id": session.attempt_id, "origin": origin},
            )
            return session.result
        self._require_phase(ExamPhase.active, "finish")

        # Guard first: no await may happen before this line.
        session.finishing = True
        if session.countdown is not None:
            session.countdown.disarm()

        frozen = MappingProxyType(dict(session.answers))
        session.frozen_answers = frozen
        started = session.started_at if session.started_at is not None else self._clock()
        duration = max(0, int(round(self._clock() - started)))
        breakdown = score_answers(session.questions, frozen)
        config = session.config

        session.grading = True
        self._set_phase(ExamPhase.results, reason=f"{origin} finish, {len(frozen)}/{len(session.questions)} answered")
        try:
            report = await self._grading_source.grade(tuple(session.questions), frozen)
        except GradingFailed as e:
            if self._session is not session:
                raise StaleAttemptError("attempt was reset while it was graded") from e
            session.grading = False
            self._abandon(session, e)
            raise
        except Exception as e:
            log.exception("grading source raised unexpectedly student=%s", self.student_id)
            failure = GradingFailed("grading source failed unexpectedly")
            if self._session is not session:
                raise StaleAttemptError("attempt was reset while it was graded") from e
            session.grading = False
            self._abandon(session, failure)
            raise failure from e

        if self._session is not session:
            log.info("discarding grading for a reset attempt=%s", session.attempt_id)
            raise StaleAttemptError("attempt was reset while it was graded")

        agree = scores_agree(breakdown, report.score)
        if not agree:
            log.warning(
                "grading score mismatch student=%s attempt=%s reported=%s computed=%s",
                self.student_id,
                session.attempt_id,
                report.score,
                breakdown.score,
                extra={
                    "event_type": "exam_score_mismatch",
                    "attempt_id": session.attempt_id,
                    "reported_score": report.score,
                    "computed_score": breakdown.score,
                },
            )

        result = ExamResult(
            correct=breakdown.correct,
            total=breakdown.total,
            duration_seconds=duration,
            track=config.track if config is not None else None,
            feedback=build_feedback(breakdown, frozen, report, no_answer_label=self._no_answer_label),
            reported_score=report.score,
            score_mismatch=not agree,
        )
        session.result = result
        session.grading = False
        log.info(
            "exam graded student=%s attempt=%s score=%s duration=%ss",
            self.student_id,
            session.attempt_id,
            result.score,
            duration,
        )

        if self._persister is not None:
            try:
                session.record_id = await self._persister.save(student_id=self.student_id, result=result)
            except PersistenceFailed as e:
                session.persistence_warning = str(e)
                log.warning("exam result kept in memory only student=%s attempt=%s", self.student_id, session.attempt_id)
            except Exception:
                session.persistence_warning = "result could not be saved"
                log.exception("result persister raised unexpectedly student=%s attempt=%s", self.student_id, session.attempt_id)
        return result

    def reset(self) -> None:
        session = self._session
        if session.countdown is not None:
            session.countdown.disarm()
        self._session = ExamSession()
        self._last_error = None
        self._set_phase(ExamPhase.selection, reason="reset")
