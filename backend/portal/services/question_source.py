from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from portal.services.exam_errors import GenerationFailed
from portal.services.exam_types import Grade, Question, Track
from portal.services.llm_client import LLMError, LLMUnavailableError, StructuredLLMClient

log = logging.getLogger(__name__)

OPTIONS_PER_QUESTION = 4


class QuestionSource(Protocol):
    async def generate(self, *, grade: Grade, track: Track | None, count: int) -> list[Question]: ...


class GeneratedQuestion(BaseModel):
    id: int | None = None
    question_text: str
    options: list[str]
    correct_answer_index: int
    explanation: str | None = None


class GeneratedQuestionBatch(BaseModel):
    questions: list[GeneratedQuestion]


QUESTION_BATCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "questions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "integer"},
                    "question_text": {"type": "string", "description": "The question text in Arabic."},
                    "options": {
                        "type": "array",
                        "description": "Exactly 4 possible answer strings in Arabic.",
                        "items": {"type": "string"},
                        "minItems": OPTIONS_PER_QUESTION,
                        "maxItems": OPTIONS_PER_QUESTION,
                    },
                    "correct_answer_index": {
                        "type": "integer",
                        "description": "The 0-based index of the correct answer in the options array.",
                    },
                    "explanation": {"type": "string", "description": "One short sentence in Arabic."},
                },
                "required": ["id", "question_text", "options", "correct_answer_index", "explanation"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["questions"],
    "additionalProperties": False,
}

SYSTEM_PROMPT = (
    "You are an experienced Egyptian school examiner. "
    "Write clear multiple-choice questions in Arabic that match the national curriculum of the given grade. "
    "Every question has exactly 4 distinct options and exactly one correct option. "
    "Spread the correct option across positions; do not always use the first one. "
    "Return ONLY JSON matching the schema, without Markdown."
)


def build_question_prompt(*, grade: Grade, track: Track | None, count: int) -> str:
    if track is not None:
        return (
            f"Generate {int(count)} multiple-choice questions in various subjects for a student in "
            f"'{grade.label}' specializing in '{track.label}' in Egypt."
        )
    return f"Generate {int(count)} multiple-choice questions in various subjects for a student in '{grade.label}' in Egypt."


def parse_question_batch(obj: Any, *, count: int) -> list[Question]:
    """Validate a raw reply as one batch; any bad item rejects all of them."""
    if isinstance(obj, list):
        obj = {"questions": obj}
    try:
        batch = GeneratedQuestionBatch.model_validate(obj)
    except ValidationError as e:
        raise GenerationFailed("question source returned data that does not match the schema") from e

    items = batch.questions
    if not items:
        raise GenerationFailed("question source returned no questions")
    if len(items) != int(count):
        raise GenerationFailed(f"question source returned {len(items)} questions, expected {int(count)}")

    out: list[Question] = []
    for i, item in enumerate(items):
        text = (item.question_text or "").strip()
        options = [str(o or "").strip() for o in item.options]
        if not text:
            raise GenerationFailed(f"question {i} has no text")
        if len(options) != OPTIONS_PER_QUESTION:
            raise GenerationFailed(f"question {i} has {len(options)} options, expected {OPTIONS_PER_QUESTION}")
        if any(not o for o in options):
            raise GenerationFailed(f"question {i} has an empty option")
        if not 0 <= item.correct_answer_index < len(options):
            raise GenerationFailed(f"question {i} has correct index {item.correct_answer_index} out of range")
        explanation = (item.explanation or "").strip() or None
        out.append(
            Question(
                id=i,
                text=text,
                options=tuple(options),
                correct_index=int(item.correct_answer_index),
                explanation=explanation,
            )
        )
    return out


class LLMQuestionSource:
    def __init__(self, client: StructuredLLMClient | None = None):
        self.client = client or StructuredLLMClient()

    async def generate(self, *, grade: Grade, track: Track | None, count: int) -> list[Question]:
        try:
            obj = await self.client.complete_json(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_question_prompt(grade=grade, track=track, count=count),
                schema_name="exam_questions",
                schema=QUESTION_BATCH_SCHEMA,
            )
        except LLMUnavailableError as e:
            raise GenerationFailed("AI exam service is currently unavailable") from e
        except LLMError as e:
            raise GenerationFailed(f"question source call failed: {e}") from e

        try:
            questions = parse_question_batch(obj, count=count)
        except GenerationFailed as e:
            log.warning("question batch rejected grade=%s track=%s reason=%s", grade.value, getattr(track, "value", None), e)
            raise

        log.info("question batch accepted grade=%s track=%s count=%d", grade.value, getattr(track, "value", None), len(questions))
        return questions
