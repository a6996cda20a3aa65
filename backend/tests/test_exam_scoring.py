from portal.services.exam_scoring import (
    build_feedback,
    parse_score,
    score_answers,
    scores_agree,
    student_answer_text,
)
from portal.services.exam_types import FeedbackItem, GradingReport

from fakes import make_questions


def test_unanswered_questions_count_as_incorrect():
    questions = make_questions(4)
    breakdown = score_answers(questions, {0: 1, 1: 0, 3: 1})

    assert breakdown.correct == 2
    assert breakdown.total == 4
    assert breakdown.score == "2/4"
    assert [q.id for q in breakdown.missed] == [1, 2]


def test_parse_score_variants():
    assert parse_score("8/10") == (8, 10)
    assert parse_score(" 8 / 10 ") == (8, 10)
    assert parse_score("٨/١٠") == (8, 10)
    assert parse_score("eight out of ten") is None
    assert parse_score(None) is None


def test_scores_agree_only_on_exact_match():
    breakdown = score_answers(make_questions(2), {0: 1})
    assert scores_agree(breakdown, "1/2")
    assert not scores_agree(breakdown, "2/2")
    assert not scores_agree(breakdown, "1/3")
    assert not scores_agree(breakdown, "garbage")


def test_student_answer_text_uses_option_or_marker():
    q = make_questions(1)[0]
    assert student_answer_text(q, {0: 2}, no_answer_label="لم يتم الإجابة") == q.options[2]
    assert student_answer_text(q, {}, no_answer_label="لم يتم الإجابة") == "لم يتم الإجابة"


def test_feedback_prefers_report_explanations_and_falls_back():
    questions = make_questions(3)
    answers = {0: 1, 1: 3}
    breakdown = score_answers(questions, answers)
    report = GradingReport(
        score="1/3",
        feedback=(
            FeedbackItem(
                question_text="  سؤال   رقم 2 ",
                student_answer="x",
                correct_answer="y",
                explanation="لأن الإجابة الصحيحة هي ب",
            ),
        ),
    )

    feedback = build_feedback(breakdown, answers, report, no_answer_label="no answer")

    assert [f.question_text for f in feedback] == ["سؤال رقم 2", "سؤال رقم 3"]
    assert feedback[0].student_answer == questions[1].options[3]
    assert feedback[0].correct_answer == questions[1].correct_option
    assert feedback[0].explanation == "لأن الإجابة الصحيحة هي ب"
    assert feedback[1].student_answer == "no answer"
    assert feedback[1].explanation == questions[2].explanation
