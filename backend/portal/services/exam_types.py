from __future__ import annotations

import enum
from dataclasses import dataclass, field

from portal.services.exam_errors import ExamConfigError


class Grade(str, enum.Enum):
    prep_1 = "prep-1"
    prep_2 = "prep-2"
    prep_3 = "prep-3"
    secondary_1 = "secondary-1"
    secondary_2 = "secondary-2"
    secondary_3 = "secondary-3"

    @property
    def label(self) -> str:
        return GRADE_LABELS[self]

    @classmethod
    def parse(cls, raw: object) -> "Grade":
        key = str(raw or "").strip().lower().replace("_", "-")
        key = GRADE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            pass
        for grade, label in GRADE_LABELS.items():
            if str(raw or "").strip() == label:
                return grade
        raise ExamConfigError(f"unknown grade: {raw!r}")


class Track(str, enum.Enum):
    science = "science"
    literary = "literary"
    science_sciences = "science-sciences"
    science_math = "science-math"

    @property
    def label(self) -> str:
        return TRACK_LABELS[self]

    @classmethod
    def parse(cls, raw: object) -> "Track":
        key = str(raw or "").strip().lower().replace("_", "-")
        try:
            return cls(key)
        except ValueError:
            pass
        for track, label in TRACK_LABELS.items():
            if str(raw or "").strip() == label:
                return track
        raise ExamConfigError(f"unknown track: {raw!r}")


# Display labels are what the generative collaborator sees in prompts.
GRADE_LABELS: dict[Grade, str] = {
    Grade.prep_1: "الصف الأول الإعدادي",
    Grade.prep_2: "الصف الثاني الإعدادي",
    Grade.prep_3: "الصف الثالث الإعدادي",
    Grade.secondary_1: "الصف الأول الثانوي",
    Grade.secondary_2: "الصف الثاني الثانوي",
    Grade.secondary_3: "الصف الثالث الثانوي",
}

GRADE_ALIASES: dict[str, str] = {
    "upper-secondary-2": Grade.secondary_2.value,
    "upper-secondary-3": Grade.secondary_3.value,
}

TRACK_LABELS: dict[Track, str] = {
    Track.science: "علمي",
    Track.literary: "أدبي",
    Track.science_sciences: "علمي علوم",
    Track.science_math: "علمي رياضة",
}

# Grades missing from this map take no track.
TRACKS_BY_GRADE: dict[Grade, tuple[Track, ...]] = {
    Grade.secondary_2: (Track.science, Track.literary),
    Grade.secondary_3: (Track.science_sciences, Track.science_math, Track.literary),
}

# Time limit (minutes) -> question count offered by the selection screen.
DURATION_PRESETS: dict[int, int] = {15: 10, 30: 15, 45: 22}


def requires_track(grade: Grade) -> bool:
    return grade in TRACKS_BY_GRADE


def allowed_tracks(grade: Grade) -> tuple[Track, ...]:
    return TRACKS_BY_GRADE.get(grade, ())


class ExamPhase(str, enum.Enum):
    selection = "selection"
    generating = "generating"
    active = "active"
    results = "results"


@dataclass(frozen=True)
class ExamConfig:
    grade: Grade
    track: Track | None
    question_count: int
    time_limit_minutes: int

    @property
    def time_limit_seconds(self) -> int:
        return int(self.time_limit_minutes) * 60


@dataclass(frozen=True)
class Question:
    id: int
    text: str
    options: tuple[str, ...]
    correct_index: int
    explanation: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(f"correct_index {self.correct_index} out of range for {len(self.options)} options")

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]


@dataclass(frozen=True)
class FeedbackItem:
    question_text: str
    student_answer: str
    correct_answer: str
    explanation: str

    def as_dict(self) -> dict[str, str]:
        return {
            "question_text": self.question_text,
            "student_answer": self.student_answer,
            "correct_answer": self.correct_answer,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class GradingReport:
    """What the grading source claims: a score string and its explanations."""

    score: str
    feedback: tuple[FeedbackItem, ...] = ()


@dataclass(frozen=True)
class ExamResult:
    correct: int
    total: int
    duration_seconds: int
    track: Track | None
    feedback: tuple[FeedbackItem, ...] = field(default_factory=tuple)
    reported_score: str | None = None
    score_mismatch: bool = False

    @property
    def score(self) -> str:
        return f"{self.correct}/{self.total}"

    @property
    def fraction(self) -> float:
        return (self.correct / self.total) if self.total else 0.0
