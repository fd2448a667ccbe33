"""Attempt analytics: per-quiz performance and the trainee leaderboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .grading import round_half_up

UNKNOWN_QUIZ = "Unknown Quiz"
UNKNOWN_USER = "Unknown User"
DEFAULT_LEADERBOARD_SIZE = 10


@dataclass(frozen=True)
class AttemptRecord:
    """A persisted attempt joined with the quiz title and user display name.

    `quiz_title` / `user_name` are `None` when the quiz or profile no longer
    resolves.
    """

    quiz_id: str
    user_id: str
    score: int
    total_points: int
    quiz_title: Optional[str] = None
    user_name: Optional[str] = None
    id: Optional[str] = None
    completed_at: Optional[datetime] = None


@dataclass
class _Tally:
    """Running totals for one group while scanning attempts."""

    label: str
    attempts: int = 0
    total_score: int = 0
    total_points: int = 0

    def add(self, attempt: AttemptRecord) -> None:
        self.attempts += 1
        self.total_score += attempt.score
        self.total_points += attempt.total_points

    def average_score(self) -> int:
        # weighted by points: sum of scores over sum of points, not a mean of percentages
        if self.total_points == 0:
            return 0
        return round_half_up(100 * self.total_score / self.total_points)


@dataclass(frozen=True)
class QuizPerformance:
    quiz_id: str
    quiz_title: str
    attempts: int
    average_score: int


@dataclass(frozen=True)
class TraineeRanking:
    user_id: str
    user_name: str
    attempts: int
    average_score: int


@dataclass(frozen=True)
class AnalyticsResult:
    total_attempts: int = 0
    quiz_analytics: List[QuizPerformance] = field(default_factory=list)
    top_trainees: List[TraineeRanking] = field(default_factory=list)


def summarize(attempts: Iterable[AttemptRecord], leaderboard_size: int = DEFAULT_LEADERBOARD_SIZE) -> AnalyticsResult:
    """Aggregate an attempt history into quiz performance and a leaderboard.

    Quiz rows come out in the order each quiz is first seen. The leaderboard
    is sorted by average score descending; `sorted` is stable so ties keep
    their encounter order. Display labels are taken from the first attempt
    seen for a group.
    """
    by_quiz: Dict[str, _Tally] = {}
    by_user: Dict[str, _Tally] = {}
    total = 0
    for attempt in attempts:
        total += 1
        quiz_tally = by_quiz.get(attempt.quiz_id)
        if quiz_tally is None:
            quiz_tally = _Tally(label=attempt.quiz_title or UNKNOWN_QUIZ)
            by_quiz[attempt.quiz_id] = quiz_tally
        quiz_tally.add(attempt)

        user_tally = by_user.get(attempt.user_id)
        if user_tally is None:
            user_tally = _Tally(label=attempt.user_name or UNKNOWN_USER)
            by_user[attempt.user_id] = user_tally
        user_tally.add(attempt)

    quiz_analytics = [
        QuizPerformance(
            quiz_id=quiz_id,
            quiz_title=t.label,
            attempts=t.attempts,
            average_score=t.average_score(),
        )
        for quiz_id, t in by_quiz.items()
    ]
    rankings = [
        TraineeRanking(
            user_id=user_id,
            user_name=t.label,
            attempts=t.attempts,
            average_score=t.average_score(),
        )
        for user_id, t in by_user.items()
    ]
    rankings = sorted(rankings, key=lambda r: -r.average_score)
    return AnalyticsResult(
        total_attempts=total,
        quiz_analytics=quiz_analytics,
        top_trainees=rankings[:max(0, leaderboard_size)],
    )
