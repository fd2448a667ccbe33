"""Quiz grading engine.

`grade` turns a fully resolved quiz definition and the answers a trainee
submitted into graded answers plus an aggregate score. It is a pure
function: loading the quiz and persisting the resulting attempt is the
caller's job (see `services.AttemptService`).

Scoring rules:
- every answer whose `question_id` belongs to the quiz is worth one point
  towards `total_points`, regardless of the question's configured `points`;
- an answer is correct only when the selected option is the question's
  designated correct option;
- answers for unknown questions are dropped without error;
- duplicate answers for the same question are graded independently and
  all of them count.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class OptionDefinition:
    """One selectable option of a question. Correctness lives on the question."""

    id: str
    option_text: str


@dataclass(frozen=True)
class QuestionDefinition:
    """A question with its ordered options and the id of the correct option."""

    id: str
    question_text: str
    options: Tuple[OptionDefinition, ...] = ()
    correct_option_id: Optional[str] = None
    points: int = 1


@dataclass(frozen=True)
class QuizDefinition:
    """A resolved quiz: metadata plus its questions in display order."""

    id: str
    title: str
    questions: Tuple[QuestionDefinition, ...] = ()
    description: Optional[str] = None
    time_limit: Optional[int] = None
    passing_score: int = 70

    def question_index(self) -> Dict[str, QuestionDefinition]:
        return {q.id: q for q in self.questions}


@dataclass(frozen=True)
class SubmittedAnswer:
    question_id: str
    selected_option_id: str


@dataclass(frozen=True)
class GradedAnswer:
    question_id: str
    selected_option_id: str
    is_correct: bool


@dataclass(frozen=True)
class GradedResult:
    answers: List[GradedAnswer] = field(default_factory=list)
    score: int = 0
    total_points: int = 0


def grade(quiz: QuizDefinition, answers: Iterable[SubmittedAnswer]) -> GradedResult:
    """Grade `answers` against `quiz`.

    Graded answers keep the order of the submitted answers, not the quiz's
    question order. An empty submission yields a zero result.
    """
    questions = quiz.question_index()
    graded: List[GradedAnswer] = []
    score = 0
    total_points = 0
    for answer in answers:
        question = questions.get(answer.question_id)
        if question is None:
            continue
        total_points += 1
        # an option id outside the question can never equal its correct option
        is_correct = (
            question.correct_option_id is not None
            and answer.selected_option_id == question.correct_option_id
        )
        if is_correct:
            score += 1
        graded.append(GradedAnswer(
            question_id=answer.question_id,
            selected_option_id=answer.selected_option_id,
            is_correct=is_correct,
        ))
    return GradedResult(answers=graded, score=score, total_points=total_points)


def percentage(score: int, total_points: int) -> int:
    """Return `score / total_points` as a whole percentage (0 when nothing was graded)."""
    if total_points <= 0:
        return 0
    return round_half_up(100 * score / total_points)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (not banker's rounding)."""
    whole = int(value // 1)
    return whole + 1 if value - whole >= 0.5 else whole
