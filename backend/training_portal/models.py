"""SQLModel data models.

This module defines the portal's database tables using SQLModel. Ids are
opaque uuid hex strings. Quizzes own their questions and questions own
their options (ORM cascade). Attempts reference quizzes by id only so
that history survives when a quiz is deleted.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field, Relationship


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    TRAINEE = "trainee"
    ADMIN = "admin"


class FeedbackStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"


class Profile(SQLModel, table=True):
    """A registered portal user.

    Fields:
    - `username` / `email`: unique login identifiers
    - `role`: `trainee` or `admin`; new accounts are always trainees
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    email: str = Field(index=True, nullable=False, unique=True)
    full_name: str
    role: Role = Field(default=Role.TRAINEE)
    password_hash: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Quiz(SQLModel, table=True):
    """A quiz authored by an administrator."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: Optional[str] = None
    time_limit: Optional[int] = None
    passing_score: int = 70
    created_by: Optional[str] = Field(default=None, foreign_key='profile.id')
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    questions: List['Question'] = Relationship(
        back_populates='quiz',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class Question(SQLModel, table=True):
    """A multiple-choice question belonging to one quiz.

    `points` is stored for authoring purposes; grading awards one point per
    answered question.
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    quiz_id: str = Field(foreign_key='quiz.id', index=True)
    question_text: str
    order_index: int = 0
    points: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    quiz: Optional[Quiz] = Relationship(back_populates='questions')
    options: List['QuestionOption'] = Relationship(
        back_populates='question',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class QuestionOption(SQLModel, table=True):
    """Possible answer for a `Question`.

    `is_correct` is set at authoring time and never sent to trainees.
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    question_id: str = Field(foreign_key='question.id', index=True)
    option_text: str
    is_correct: bool = False
    order_index: int = 0
    question: Optional[Question] = Relationship(back_populates='options')


class QuizAttempt(SQLModel, table=True):
    """One graded submission of a quiz by a user. Never updated after insert."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    quiz_id: str = Field(index=True)
    user_id: str = Field(foreign_key='profile.id', index=True)
    score: int = 0
    total_points: int = 0
    completed_at: datetime = Field(default_factory=_utcnow)
    answers: List['AttemptAnswer'] = Relationship(back_populates='attempt')


class AttemptAnswer(SQLModel, table=True):
    """A single graded answer inside a `QuizAttempt`."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    attempt_id: str = Field(foreign_key='quizattempt.id', index=True)
    position: int = 0
    question_id: str
    selected_option_id: str
    is_correct: bool = False
    attempt: Optional[QuizAttempt] = Relationship(back_populates='answers')


class Manual(SQLModel, table=True):
    """A reference manual. `pdf_url` points at an externally stored document."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    category: str = Field(index=True)
    content: str = ""
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    pdf_url: Optional[str] = None
    created_by: Optional[str] = Field(default=None, foreign_key='profile.id')
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Feedback(SQLModel, table=True):
    """Feedback submitted by a trainee and triaged by administrators."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(foreign_key='profile.id', index=True)
    subject: str
    message: str
    status: FeedbackStatus = Field(default=FeedbackStatus.PENDING)
    created_at: datetime = Field(default_factory=_utcnow)
    comments: List['AdminComment'] = Relationship(
        back_populates='feedback',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class AdminComment(SQLModel, table=True):
    """An administrator's reply attached to a `Feedback` item."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    feedback_id: str = Field(foreign_key='feedback.id', index=True)
    admin_id: str = Field(foreign_key='profile.id')
    comment: str
    created_at: datetime = Field(default_factory=_utcnow)
    feedback: Optional[Feedback] = Relationship(back_populates='comments')
