from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from portal.core.config import settings
from portal.services.exam_errors import GradingFailed
from portal.services.exam_scoring import student_answer_text
from portal.services.exam_types import FeedbackItem, GradingReport, Question
from portal.services.llm_client import LLMError, LLMUnavailableError, StructuredLLMClient

log = logging.getLogger(__name__)


class GradingSource(Protocol):
    async def grade(self, questions: Sequence[Question], answers: Mapping[int, int]) -> GradingReport: ...


class GradedFeedback(BaseModel):
    question_text: str
    your_answer: str
    correct_answer: str
    explanation: str


class GradingReply(BaseModel):
    score: str = Field(..., pattern=r"^\s*\d+\s*/\s*\d+\s*$")
    feedback: list[GradedFeedback] = Field(default_factory=list)


GRADING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "score": {"type": "string", "description": "The score as a fraction, e.g. '8/10'."},
        "feedback": {
            "type": "array",
            "description": "Feedback for incorrectly answered questions only.",
            "items": {
                "type": "object",
                "properties": {
                    "question_text": {"type": "string"},
                    "your_answer": {"type": "string"},
                    "correct_answer": {"type": "string"},
                    "explanation": {
                        "type": "string",
                        "description": "A simple explanation in Arabic why the correct answer is right.",
                    },
                },
                "required": ["question_text", "your_answer", "correct_answer", "explanation"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["score", "feedback"],
    "additionalProperties": False,
}


def grading_system_prompt(total: int) -> str:
    return (
        "You are a helpful and encouraging teacher's assistant speaking Arabic. "
        "Evaluate the student's answers. "
        f"Calculate the score as a string 'X/{int(total)}' and provide a simple, clear explanation in Arabic "
        "for each *incorrect* answer only. An answer equal to the no-answer marker is incorrect. "
        "Your response must be in JSON."
    )


def build_grading_items(
    questions: Sequence[Question],
    answers: Mapping[int, int],
    *,
    no_answer_label: str,
) -> list[dict[str, Any]]:
    return [
        {
            "question": q.text,
            "options": list(q.options),
            "correct_answer": q.correct_option,
            "student_answer": student_answer_text(q, answers, no_answer_label=no_answer_label),
        }
        for q in questions
    ]


class LLMGradingSource:
    def __init__(self, client: StructuredLLMClient | None = None, *, no_answer_label: str | None = None):
        self.client = client or StructuredLLMClient()
        self.no_answer_label = no_answer_label or settings.exam_no_answer_label

    async def grade(self, questions: Sequence[Question], answers: Mapping[int, int]) -> GradingReport:
        items = build_grading_items(questions, answers, no_answer_label=self.no_answer_label)
        user_prompt = (
            "A student has completed a quiz. Here are their answers: "
            f"{json.dumps(items, ensure_ascii=False)}. "
            f"Unanswered questions are marked as '{self.no_answer_label}'. Please evaluate them."
        )
        try:
            obj = await self.client.complete_json(
                system_prompt=grading_system_prompt(len(questions)),
                user_prompt=user_prompt,
                schema_name="exam_grading",
                schema=GRADING_SCHEMA,
            )
        except LLMUnavailableError as e:
            raise GradingFailed("AI grading service is currently unavailable") from e
        except LLMError as e:
            raise GradingFailed(f"grading source call failed: {e}") from e

        try:
            reply = GradingReply.model_validate(obj)
        except ValidationError as e:
            log.warning("grading reply rejected: schema mismatch")
            raise GradingFailed("grading source returned data that does not match the schema") from e

        return GradingReport(
            score=reply.score.strip(),
            feedback=tuple(
                FeedbackItem(
                    question_text=f.question_text,
                    student_answer=f.your_answer,
                    correct_answer=f.correct_answer,
                    explanation=f.explanation,
                )
                for f in reply.feedback
            ),
        )
