"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (profiles,
quizzes, attempts, manuals, feedback). Repositories return SQLModel
objects or core dataclasses, return `None` for missing rows and perform
commits/refreshes where appropriate.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models
from .analytics import AttemptRecord
from .errors import ConflictError
from .grading import GradedAnswer, OptionDefinition, QuestionDefinition, QuizDefinition


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def display_name(profile: Optional[models.Profile]) -> Optional[str]:
    """Prefer the full name, then the username; `None` when the profile is gone."""
    if profile is None:
        return None
    return profile.full_name or profile.username or None


class UserRepository:
    """CRUD operations for `Profile` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.Profile) -> models.Profile:
        """Persist a new profile and return the managed instance.

        A unique-constraint violation (a concurrent sign-up with the same
        username or email) rolls back and raises `ConflictError`.
        """
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if "email" in str(exc.orig).lower():
                raise ConflictError("This email is already registered. Please try logging in instead.") from exc
            raise ConflictError("Username already taken") from exc
        self.session.refresh(user)
        return user

    def get(self, user_id: str) -> Optional[models.Profile]:
        return self.session.get(models.Profile, user_id)

    def get_by_username(self, username: str) -> Optional[models.Profile]:
        """Return a `Profile` by username or `None` if not found."""
        stmt = select(models.Profile).where(models.Profile.username == username)
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.Profile]:
        stmt = select(models.Profile).where(models.Profile.email == email)
        return self.session.exec(stmt).first()

    def set_role(self, user: models.Profile, role: models.Role) -> models.Profile:
        user.role = role
        user.updated_at = _utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def names_for(self, user_ids: Sequence[str]) -> Dict[str, Optional[str]]:
        """Map each id to its display name in one query."""
        if not user_ids:
            return {}
        stmt = select(models.Profile).where(models.Profile.id.in_(set(user_ids)))
        found = {p.id: display_name(p) for p in self.session.exec(stmt).all()}
        return {uid: found.get(uid) for uid in user_ids}


class QuizRepository:
    """Quiz definitions with their questions and options."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, quiz_id: str) -> Optional[models.Quiz]:
        return self.session.get(models.Quiz, quiz_id)

    def list_quizzes(self) -> List[models.Quiz]:
        """Return every quiz, newest first."""
        stmt = select(models.Quiz).order_by(models.Quiz.created_at.desc())
        return self.session.exec(stmt).all()

    def fetch_quiz_by_id(self, quiz_id: str) -> Optional[QuizDefinition]:
        """Load a quiz with all questions/options and resolve each correct option."""
        quiz = self.get(quiz_id)
        if quiz is None:
            return None
        return self.to_definition(quiz)

    def to_definition(self, quiz: models.Quiz) -> QuizDefinition:
        questions = []
        for q in sorted(quiz.questions, key=lambda x: x.order_index):
            options = sorted(q.options, key=lambda o: o.order_index)
            correct = next((o.id for o in options if o.is_correct), None)
            questions.append(QuestionDefinition(
                id=q.id,
                question_text=q.question_text,
                options=tuple(OptionDefinition(id=o.id, option_text=o.option_text) for o in options),
                correct_option_id=correct,
                points=q.points,
            ))
        return QuizDefinition(
            id=quiz.id,
            title=quiz.title,
            questions=tuple(questions),
            description=quiz.description,
            time_limit=quiz.time_limit,
            passing_score=quiz.passing_score,
        )

    def create(self, quiz: models.Quiz, questions: List[Tuple[models.Question, List[models.QuestionOption]]]) -> models.Quiz:
        """Store a quiz and its questions/options in a single commit."""
        self.session.add(quiz)
        self._attach_questions(quiz, questions)
        self._commit()
        self.session.refresh(quiz)
        return quiz

    def update(self, quiz: models.Quiz, fields: Dict[str, object],
               questions: Optional[List[Tuple[models.Question, List[models.QuestionOption]]]] = None) -> models.Quiz:
        """Apply metadata `fields`; a `questions` payload replaces every question and option."""
        for key, value in fields.items():
            setattr(quiz, key, value)
        quiz.updated_at = _utcnow()
        if questions is not None:
            quiz.questions.clear()
            # flush deletes before reinserting so order_index stays unambiguous
            self.session.flush()
            self._attach_questions(quiz, questions)
        self.session.add(quiz)
        self._commit()
        self.session.refresh(quiz)
        return quiz

    def delete(self, quiz: models.Quiz) -> None:
        """Delete a quiz; questions and options go with it, attempts are kept."""
        self.session.delete(quiz)
        self._commit()

    def _attach_questions(self, quiz, questions):
        for index, (question, options) in enumerate(questions):
            question.order_index = index
            for opt_index, option in enumerate(options):
                option.order_index = opt_index
                question.options.append(option)
            quiz.questions.append(question)

    def _commit(self):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


class AttemptRepository:
    """Persist graded attempts and read back the attempt history."""
    def __init__(self, session: Session):
        self.session = session

    def insert_attempt(self, attempt: models.QuizAttempt, graded: Sequence[GradedAnswer]) -> models.QuizAttempt:
        """Store an attempt and its graded answers atomically.

        Everything is added before a single commit; on failure the session is
        rolled back so readers never see an attempt without its answers.
        """
        self.session.add(attempt)
        for position, g in enumerate(graded):
            self.session.add(models.AttemptAnswer(
                attempt_id=attempt.id,
                position=position,
                question_id=g.question_id,
                selected_option_id=g.selected_option_id,
                is_correct=g.is_correct,
            ))
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(attempt)
        return attempt

    def get(self, attempt_id: str) -> Optional[models.QuizAttempt]:
        return self.session.get(models.QuizAttempt, attempt_id)

    def list_answers(self, attempt_id: str) -> List[models.AttemptAnswer]:
        stmt = (
            select(models.AttemptAnswer)
            .where(models.AttemptAnswer.attempt_id == attempt_id)
            .order_by(models.AttemptAnswer.position)
        )
        return self.session.exec(stmt).all()

    def fetch_attempt_history(self, quiz_id: Optional[str] = None, user_id: Optional[str] = None) -> List[AttemptRecord]:
        """Return attempts newest first, joined with quiz title and user display name.

        Outer joins keep attempts whose quiz or profile no longer exists; their
        title/name is `None`.
        """
        stmt = (
            select(models.QuizAttempt, models.Quiz, models.Profile)
            .join(models.Quiz, models.Quiz.id == models.QuizAttempt.quiz_id, isouter=True)
            .join(models.Profile, models.Profile.id == models.QuizAttempt.user_id, isouter=True)
        )
        if quiz_id:
            stmt = stmt.where(models.QuizAttempt.quiz_id == quiz_id)
        if user_id:
            stmt = stmt.where(models.QuizAttempt.user_id == user_id)
        stmt = stmt.order_by(models.QuizAttempt.completed_at.desc())
        out = []
        for attempt, quiz, profile in self.session.exec(stmt).all():
            out.append(AttemptRecord(
                id=attempt.id,
                quiz_id=attempt.quiz_id,
                user_id=attempt.user_id,
                score=attempt.score,
                total_points=attempt.total_points,
                completed_at=attempt.completed_at,
                quiz_title=quiz.title if quiz else None,
                user_name=display_name(profile),
            ))
        return out


class ManualRepository:
    """CRUD and search helpers for `Manual` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, manual: models.Manual) -> models.Manual:
        self.session.add(manual)
        self.session.commit()
        self.session.refresh(manual)
        return manual

    def get(self, manual_id: str) -> Optional[models.Manual]:
        return self.session.get(models.Manual, manual_id)

    def list_manuals(self) -> List[models.Manual]:
        """Return every manual, newest first."""
        stmt = select(models.Manual).order_by(models.Manual.created_at.desc())
        return self.session.exec(stmt).all()

    def update(self, manual: models.Manual, fields: Dict[str, object]) -> models.Manual:
        for key, value in fields.items():
            setattr(manual, key, value)
        manual.updated_at = _utcnow()
        self.session.add(manual)
        self.session.commit()
        self.session.refresh(manual)
        return manual

    def delete(self, manual: models.Manual) -> None:
        self.session.delete(manual)
        self.session.commit()


class FeedbackRepository:
    """Feedback items and the admin comments attached to them."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, feedback: models.Feedback) -> models.Feedback:
        self.session.add(feedback)
        self.session.commit()
        self.session.refresh(feedback)
        return feedback

    def get(self, feedback_id: str) -> Optional[models.Feedback]:
        return self.session.get(models.Feedback, feedback_id)

    def list_feedback(self, user_id: Optional[str] = None) -> List[models.Feedback]:
        """Return feedback newest first, optionally restricted to one author."""
        stmt = select(models.Feedback)
        if user_id:
            stmt = stmt.where(models.Feedback.user_id == user_id)
        stmt = stmt.order_by(models.Feedback.created_at.desc())
        return self.session.exec(stmt).all()

    def set_status(self, feedback: models.Feedback, status: models.FeedbackStatus) -> models.Feedback:
        feedback.status = status
        self.session.add(feedback)
        self.session.commit()
        self.session.refresh(feedback)
        return feedback

    def add_comment(self, comment: models.AdminComment) -> models.AdminComment:
        self.session.add(comment)
        self.session.commit()
        self.session.refresh(comment)
        return comment

    def list_comments(self, feedback_id: str) -> List[models.AdminComment]:
        """Comments for a feedback item, oldest first."""
        stmt = (
            select(models.AdminComment)
            .where(models.AdminComment.feedback_id == feedback_id)
            .order_by(models.AdminComment.created_at)
        )
        return self.session.exec(stmt).all()
