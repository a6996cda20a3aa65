from __future__ import annotations

from pydantic import BaseModel, Field


class TrackOption(BaseModel):
    value: str
    label: str


class ExamOptionsResponse(BaseModel):
    grade: str
    grade_label: str
    requires_track: bool
    tracks: list[TrackOption]
    duration_presets: dict[int, int]


class ExamConfigureRequest(BaseModel):
    grade: str
    track: str | None = None
    time_limit_minutes: int = 15
    question_count: int | None = None


class ExamConfigResponse(BaseModel):
    grade: str
    grade_label: str
    track: str | None
    track_label: str | None
    question_count: int
    time_limit_minutes: int


class ExamQuestionPublic(BaseModel):
    id: int
    question_text: str
    options: list[str]


class ExamAnswerRequest(BaseModel):
    question_id: int = Field(..., ge=0)
    option_index: int = Field(..., ge=0)


class ExamFeedbackItem(BaseModel):
    question_text: str
    your_answer: str
    correct_answer: str
    explanation: str


class ExamResultResponse(BaseModel):
    score: str
    correct: int
    total: int
    fraction: float
    duration_seconds: int
    track: str | None
    feedback: list[ExamFeedbackItem]
    reported_score: str | None = None
    score_mismatch: bool = False


class ExamStateResponse(BaseModel):
    phase: str
    attempt_id: str
    config: ExamConfigResponse | None = None
    remaining_seconds: int | None = None
    questions: list[ExamQuestionPublic] = []
    answers: dict[int, int] = {}
    grading: bool = False
    result: ExamResultResponse | None = None
    record_id: str | None = None
    persistence_warning: str | None = None
    last_error: str | None = None
