import asyncio

import pytest

from portal.services.exam_errors import GradingFailed
from portal.services.grading_source import LLMGradingSource, build_grading_items
from portal.services.llm_client import LLMResponseError

from fakes import make_questions


class _FakeClient:
    def __init__(self, reply=None, error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    async def complete_json(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.reply


def test_grading_items_use_option_text_and_marker():
    questions = make_questions(2)
    items = build_grading_items(questions, {0: 1}, no_answer_label="no answer")

    assert items[0]["student_answer"] == questions[0].options[1]
    assert items[0]["correct_answer"] == questions[0].correct_option
    assert items[1]["student_answer"] == "no answer"
    assert items[1]["options"] == list(questions[1].options)


def test_llm_grading_source_returns_report():
    questions = make_questions(2)
    client = _FakeClient(
        reply={
            "score": "1/2",
            "feedback": [
                {
                    "question_text": questions[1].text,
                    "your_answer": "no answer",
                    "correct_answer": questions[1].correct_option,
                    "explanation": "راجع الدرس",
                }
            ],
        }
    )
    source = LLMGradingSource(client=client, no_answer_label="no answer")

    report = asyncio.run(source.grade(questions, {0: 1}))

    assert report.score == "1/2"
    assert report.feedback[0].student_answer == "no answer"
    assert report.feedback[0].explanation == "راجع الدرس"

    call = client.calls[0]
    assert call["schema_name"] == "exam_grading"
    assert "X/2" in call["system_prompt"]
    assert questions[0].text in call["user_prompt"]


def test_llm_grading_source_rejects_bad_score():
    source = LLMGradingSource(client=_FakeClient(reply={"score": "eight", "feedback": []}))
    with pytest.raises(GradingFailed):
        asyncio.run(source.grade(make_questions(1), {}))


def test_llm_grading_source_translates_client_errors():
    source = LLMGradingSource(client=_FakeClient(error=LLMResponseError("invalid_json")))
    with pytest.raises(GradingFailed) as ei:
        asyncio.run(source.grade(make_questions(1), {}))
    assert ei.value.kind == "grading"
