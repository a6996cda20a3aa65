from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from portal.services.exam_types import FeedbackItem, GradingReport, Question

_ARABIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩", "0123456789")


def _clean(s: object) -> str:
    return re.sub(r"\s+", " ", str(s or "").strip()).strip()


@dataclass(frozen=True)
class ScoreBreakdown:
    correct: int
    total: int
    missed: tuple[Question, ...]

    @property
    def score(self) -> str:
        return f"{self.correct}/{self.total}"


def score_answers(questions: Sequence[Question], answers: Mapping[int, int]) -> ScoreBreakdown:
    # Unanswered questions count as incorrect.
    missed: list[Question] = []
    correct = 0
    for q in questions:
        if answers.get(q.id) == q.correct_index:
            correct += 1
        else:
            missed.append(q)
    return ScoreBreakdown(correct=correct, total=len(questions), missed=tuple(missed))


def parse_score(text: object) -> tuple[int, int] | None:
    """Parse an "X/Y" score string; returns None when it is not one."""
    s = _clean(text).translate(_ARABIC_DIGITS)
    m = re.fullmatch(r"(\d+)\s*/\s*(\d+)", s)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def scores_agree(breakdown: ScoreBreakdown, reported: object) -> bool:
    return parse_score(reported) == (breakdown.correct, breakdown.total)


def student_answer_text(question: Question, answers: Mapping[int, int], *, no_answer_label: str) -> str:
    idx = answers.get(question.id)
    if idx is None or not 0 <= idx < len(question.options):
        return no_answer_label
    return question.options[idx]


def build_feedback(
    breakdown: ScoreBreakdown,
    answers: Mapping[int, int],
    report: GradingReport | None,
    *,
    no_answer_label: str,
) -> tuple[FeedbackItem, ...]:
    """Feedback for missed questions only, with option text instead of indexes.

    Explanations come from the grading report when it mentions the question,
    then from the explanation generated with the question.
    """
    explained: dict[str, str] = {}
    for item in (report.feedback if report else ()):
        key = _clean(item.question_text).lower()
        if key and item.explanation and key not in explained:
            explained[key] = item.explanation.strip()

    out: list[FeedbackItem] = []
    for q in breakdown.missed:
        explanation = explained.get(_clean(q.text).lower()) or (q.explanation or "")
        out.append(
            FeedbackItem(
                question_text=q.text,
                student_answer=student_answer_text(q, answers, no_answer_label=no_answer_label),
                correct_answer=q.correct_option,
                explanation=explanation,
            )
        )
    return tuple(out)
