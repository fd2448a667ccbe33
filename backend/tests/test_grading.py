import pytest

from training_portal.grading import (
    GradedAnswer,
    OptionDefinition,
    QuestionDefinition,
    QuizDefinition,
    SubmittedAnswer,
    grade,
    percentage,
    round_half_up,
)


def _question(qid, correct, option_ids=("opt1", "opt2", "opt3"), points=1):
    return QuestionDefinition(
        id=qid,
        question_text=f"Question {qid}",
        options=tuple(OptionDefinition(id=o, option_text=o.upper()) for o in option_ids),
        correct_option_id=correct,
        points=points,
    )


@pytest.fixture
def one_question_quiz():
    return QuizDefinition(id="quiz1", title="One", questions=(_question("q1", "opt1"),))


@pytest.fixture
def three_question_quiz():
    return QuizDefinition(
        id="quiz3",
        title="Three",
        questions=(
            _question("q1", "opt1"),
            _question("q2", "opt2", points=5),
            _question("q3", "opt3"),
        ),
    )


def test_empty_submission_scores_zero(three_question_quiz):
    result = grade(three_question_quiz, [])
    assert result.score == 0
    assert result.total_points == 0
    assert result.answers == []


def test_unknown_question_is_dropped(one_question_quiz):
    result = grade(one_question_quiz, [SubmittedAnswer("doesNotExist", "x")])
    assert (result.score, result.total_points, result.answers) == (0, 0, [])


def test_correct_answer(one_question_quiz):
    result = grade(one_question_quiz, [SubmittedAnswer("q1", "opt1")])
    assert result.score == 1
    assert result.total_points == 1
    assert result.answers == [GradedAnswer("q1", "opt1", True)]


def test_wrong_answer(one_question_quiz):
    result = grade(one_question_quiz, [SubmittedAnswer("q1", "opt2")])
    assert result.score == 0
    assert result.total_points == 1
    assert result.answers[0].is_correct is False


def test_option_outside_question_is_wrong(one_question_quiz):
    result = grade(one_question_quiz, [SubmittedAnswer("q1", "not-an-option")])
    assert result.total_points == 1
    assert result.answers[0].is_correct is False


def test_question_without_correct_option_never_scores():
    quiz = QuizDefinition(id="z", title="Z", questions=(_question("q1", None),))
    result = grade(quiz, [SubmittedAnswer("q1", "opt1")])
    assert result.score == 0
    assert result.total_points == 1


def test_unanswered_questions_do_not_count(three_question_quiz):
    result = grade(three_question_quiz, [SubmittedAnswer("q3", "opt3")])
    assert result.total_points == 1
    assert result.score == 1


def test_configured_points_are_ignored(three_question_quiz):
    result = grade(three_question_quiz, [SubmittedAnswer("q2", "opt2")])
    assert result.score == 1
    assert result.total_points == 1


def test_output_follows_submission_order(three_question_quiz):
    answers = [
        SubmittedAnswer("q3", "opt1"),
        SubmittedAnswer("q1", "opt1"),
        SubmittedAnswer("nope", "opt1"),
        SubmittedAnswer("q2", "opt2"),
    ]
    result = grade(three_question_quiz, answers)
    assert [a.question_id for a in result.answers] == ["q3", "q1", "q2"]
    assert [a.is_correct for a in result.answers] == [False, True, True]
    assert result.score == 2
    assert result.total_points == 3


def test_duplicate_answers_are_counted_each_time(one_question_quiz):
    answers = [SubmittedAnswer("q1", "opt1"), SubmittedAnswer("q1", "opt1"), SubmittedAnswer("q1", "opt2")]
    result = grade(one_question_quiz, answers)
    assert result.total_points == 3
    assert result.score == 2
    assert len(result.answers) == 3


@pytest.mark.parametrize("answers", [
    [],
    [SubmittedAnswer("q1", "opt1"), SubmittedAnswer("x", "y")],
    [SubmittedAnswer("q2", "opt1"), SubmittedAnswer("q2", "opt2"), SubmittedAnswer("q3", "opt3")],
    [SubmittedAnswer("ghost", "opt1")] * 4,
])
def test_score_bounded_by_total_and_total_by_answers(three_question_quiz, answers):
    result = grade(three_question_quiz, answers)
    assert result.total_points <= len(answers)
    assert result.score <= result.total_points


def test_grade_accepts_any_iterable(one_question_quiz):
    result = grade(one_question_quiz, (a for a in [SubmittedAnswer("q1", "opt1")]))
    assert result.score == 1


def test_percentage_and_rounding():
    assert percentage(0, 0) == 0
    assert percentage(1, 3) == 33
    assert percentage(2, 3) == 67
    assert percentage(1, 8) == 13  # 12.5 rounds up
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2


def test_percentage_scales_before_dividing():
    # 100 * 57 / 200 is exactly 28.5; dividing first would land just below it
    assert percentage(57, 200) == 29
    assert round_half_up(28.5) == 29
