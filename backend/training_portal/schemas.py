"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Structural rules that need context
(one correct option per question, known option keys) are checked in
the services.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .models import FeedbackStatus, Role


class RegisterIn(BaseModel):
    """Payload for account sign-up. New accounts are always trainees."""
    # no "@" so a username can never shadow another account's email at login
    username: str = Field(min_length=1, pattern=r"^[^@\s]+$")
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    full_name: str = Field(min_length=1)


class LoginIn(BaseModel):
    """Login with username or email; `role` asks for a specific portal."""
    username: str
    password: str
    role: Optional[Role] = None


class OptionIn(BaseModel):
    """An option in an authoring request.

    `key` is a client-chosen identifier used only to designate the correct
    option; it is not stored.
    """
    key: str
    option_text: str


class QuestionIn(BaseModel):
    question_text: str
    options: List[OptionIn]
    correct_option_key: str
    points: int = 1


class QuizIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=1)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    questions: List[QuestionIn]


class QuizUpdate(BaseModel):
    """Partial quiz update. A `questions` list replaces all existing questions."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=1)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    questions: Optional[List[QuestionIn]] = None


class AnswerIn(BaseModel):
    """Single submitted answer used when grading a quiz."""
    question_id: str
    selected_option_id: str


class QuizSubmission(BaseModel):
    """Request model for grading containing a list of answers."""
    answers: List[AnswerIn] = []


class ManualIn(BaseModel):
    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    content: str = ""
    tags: List[str] = []
    pdf_url: Optional[str] = None


class ManualUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    pdf_url: Optional[str] = None


class FeedbackIn(BaseModel):
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)


class FeedbackStatusIn(BaseModel):
    status: FeedbackStatus


class CommentIn(BaseModel):
    comment: str = Field(min_length=1)


class RoleIn(BaseModel):
    role: Role
