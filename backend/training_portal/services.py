"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
the grading/analytics core and auxiliary logic. Services are
intentionally thin: they check permissions and input, call the pure
core, persist aggregates via repositories and shape JSON payloads.
Failures are raised as `errors.PortalError` subclasses.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .analytics import UNKNOWN_QUIZ, UNKNOWN_USER, summarize
from .cache import QuizCache
from .config import settings
from .errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationFailed
from .grading import QuizDefinition, SubmittedAnswer, grade, percentage
from .schemas import QuestionIn

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS

logger = logging.getLogger("portal.services")


@dataclass(frozen=True)
class Identity:
    """The authenticated caller as established by the auth layer."""
    user_id: str
    username: str
    email: str
    full_name: str
    role: models.Role

    @property
    def is_admin(self) -> bool:
        return self.role == models.Role.ADMIN


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _user_payload(user: models.Profile) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'full_name': user.full_name,
        'role': user.role.value,
    }


class AuthService:
    """Account sign-up, credential checks and token issuing."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, email: str, password: str, full_name: str) -> models.Profile:
        """Create a trainee account with a hashed password.

        Raises `ConflictError` when the username or email is already in use,
        including as the other kind of login identifier.
        """
        if '@' in username:
            raise ValidationFailed('username cannot contain "@"')
        if self.user_repo.get_by_username(username) or self.user_repo.get_by_email(username):
            raise ConflictError('Username already taken')
        if self.user_repo.get_by_email(email) or self.user_repo.get_by_username(email):
            raise ConflictError('This email is already registered. Please try logging in instead.')
        hashed = PWD_CTX.hash(password)
        user = models.Profile(
            username=username,
            email=email,
            full_name=full_name,
            role=models.Role.TRAINEE,
            password_hash=hashed,
        )
        return self.user_repo.create(user)

    def authenticate(self, login: str, password: str, role: Optional[models.Role] = None) -> dict:
        """Verify credentials and return `{access_token, user}`.

        `login` may be a username or an email address. When `role` is given
        the account must hold that role.
        """
        user = self.user_repo.get_by_username(login) or self.user_repo.get_by_email(login)
        if not user or not PWD_CTX.verify(password, user.password_hash):
            logger.warning("login rejected for %r", login)
            raise UnauthorizedError('invalid credentials')
        if role is not None and user.role != role:
            logger.warning("login for %r rejected: requested role %s", login, role.value)
            raise UnauthorizedError(f'Invalid credentials for {role.value} role')
        return {'access_token': self.issue_token(user), 'user': _user_payload(user)}

    def issue_token(self, user: models.Profile) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {
            "user_id": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
            "exp": int(expire.timestamp()),
        }
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

    def set_role(self, user_id: str, role: models.Role) -> dict:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError('User not found')
        user = self.user_repo.set_role(user, role)
        logger.info("user %s role set to %s", user.id, role.value)
        return _user_payload(user)


def _require_admin(identity: Identity) -> None:
    if not identity.is_admin:
        raise ForbiddenError('admin role required')


class QuizService:
    """Quiz authoring for admins and quiz views for everyone."""
    def __init__(self, session: Session, cache: QuizCache):
        self.session = session
        self.cache = cache
        self.quiz_repo = repositories.QuizRepository(session)

    def get_definition(self, quiz_id: str) -> QuizDefinition:
        """Return the resolved quiz, served from the cache when possible."""
        quiz = self.cache.get(quiz_id)
        if quiz is None:
            # read the generation before loading so a concurrent invalidate wins
            generation = self.cache.generation()
            quiz = self.quiz_repo.fetch_quiz_by_id(quiz_id)
            if quiz is None:
                raise NotFoundError('Quiz not found')
            self.cache.put(quiz, generation)
        return quiz

    def list_quizzes(self, identity: Identity) -> List[dict]:
        out = []
        for quiz in self.quiz_repo.list_quizzes():
            payload = self._quiz_payload(self.get_definition(quiz.id), identity.is_admin)
            payload['created_at'] = _iso(quiz.created_at)
            payload['updated_at'] = _iso(quiz.updated_at)
            out.append(payload)
        return out

    def get_quiz(self, identity: Identity, quiz_id: str) -> dict:
        return self._quiz_payload(self.get_definition(quiz_id), identity.is_admin)

    def create_quiz(self, identity: Identity, payload) -> dict:
        _require_admin(identity)
        questions = self._build_questions(payload.questions)
        quiz = models.Quiz(
            title=payload.title,
            description=payload.description,
            time_limit=payload.time_limit,
            passing_score=payload.passing_score if payload.passing_score is not None else settings.DEFAULT_PASSING_SCORE,
            created_by=identity.user_id,
        )
        quiz = self.quiz_repo.create(quiz, questions)
        self.cache.invalidate(quiz.id)
        logger.info("quiz %s created by %s with %d questions", quiz.id, identity.user_id, len(questions))
        return self.get_quiz(identity, quiz.id)

    def update_quiz(self, identity: Identity, quiz_id: str, payload) -> dict:
        _require_admin(identity)
        quiz = self.quiz_repo.get(quiz_id)
        if not quiz:
            raise NotFoundError('Quiz not found')
        fields = payload.model_dump(exclude_unset=True, exclude={'questions'})
        for required in ('title', 'passing_score'):
            if required in fields and fields[required] is None:
                raise ValidationFailed(f'{required} cannot be empty')
        questions = None
        if payload.questions is not None:
            questions = self._build_questions(payload.questions)
        self.quiz_repo.update(quiz, fields, questions)
        self.cache.invalidate(quiz_id)
        logger.info("quiz %s updated by %s (questions replaced: %s)", quiz_id, identity.user_id, questions is not None)
        return self.get_quiz(identity, quiz_id)

    def delete_quiz(self, identity: Identity, quiz_id: str) -> None:
        _require_admin(identity)
        quiz = self.quiz_repo.get(quiz_id)
        if not quiz:
            raise NotFoundError('Quiz not found')
        self.quiz_repo.delete(quiz)
        self.cache.invalidate(quiz_id)
        logger.info("quiz %s deleted by %s", quiz_id, identity.user_id)

    def _build_questions(self, questions: List[QuestionIn]):
        """Validate authoring input and build unsaved question/option rows.

        Each question needs at least two options and a `correct_option_key`
        naming exactly one of them.
        """
        if not questions:
            raise ValidationFailed('a quiz needs at least one question')
        built = []
        for idx, q in enumerate(questions):
            if not q.question_text.strip():
                raise ValidationFailed(f'question {idx + 1}: missing question_text')
            if len(q.options) < 2:
                raise ValidationFailed(f'question {idx + 1}: at least two options are required')
            keys = [o.key for o in q.options]
            if len(set(keys)) != len(keys):
                raise ValidationFailed(f'question {idx + 1}: option keys must be unique')
            if q.correct_option_key not in keys:
                raise ValidationFailed(f'question {idx + 1}: correct_option_key does not match any option')
            options = [
                models.QuestionOption(option_text=o.option_text, is_correct=o.key == q.correct_option_key)
                for o in q.options
            ]
            question = models.Question(question_text=q.question_text, points=q.points)
            built.append((question, options))
        return built

    def _quiz_payload(self, quiz: QuizDefinition, include_answers: bool) -> dict:
        """Serialize a quiz; correct options are only included for admins."""
        questions = []
        for q in quiz.questions:
            item = {
                'id': q.id,
                'question_text': q.question_text,
                'points': q.points,
                'options': [{'id': o.id, 'option_text': o.option_text} for o in q.options],
            }
            if include_answers:
                item['correct_option_id'] = q.correct_option_id
                for opt in item['options']:
                    opt['is_correct'] = opt['id'] == q.correct_option_id
            questions.append(item)
        return {
            'id': quiz.id,
            'title': quiz.title,
            'description': quiz.description,
            'time_limit': quiz.time_limit,
            'passing_score': quiz.passing_score,
            'question_count': len(quiz.questions),
            'questions': questions,
        }


def _attempt_summary(record) -> dict:
    return {
        'id': record.id,
        'quiz_id': record.quiz_id,
        'quiz_title': record.quiz_title or UNKNOWN_QUIZ,
        'user_id': record.user_id,
        'user_name': record.user_name or UNKNOWN_USER,
        'score': record.score,
        'total_points': record.total_points,
        'percentage': percentage(record.score, record.total_points),
        'completed_at': _iso(record.completed_at),
    }


class AttemptService:
    """Grade submissions, persist attempts and read attempt history."""
    def __init__(self, session: Session, cache: QuizCache):
        self.session = session
        self.quizzes = QuizService(session, cache)
        self.attempt_repo = repositories.AttemptRepository(session)

    def submit(self, identity: Identity, quiz_id: str, answers: List[Dict[str, str]]) -> dict:
        """Grade `answers` for `quiz_id` and store the attempt.

        Answers for unknown questions are ignored by the grader. The returned
        payload includes the graded answers, a whole-number percentage and
        whether the quiz's passing score was reached.
        """
        quiz = self.quizzes.get_definition(quiz_id)
        submitted = [SubmittedAnswer(question_id=a['question_id'], selected_option_id=a['selected_option_id']) for a in answers]
        result = grade(quiz, submitted)
        attempt = models.QuizAttempt(
            quiz_id=quiz.id,
            user_id=identity.user_id,
            score=result.score,
            total_points=result.total_points,
        )
        attempt = self.attempt_repo.insert_attempt(attempt, result.answers)
        pct = percentage(result.score, result.total_points)
        logger.info(
            "attempt %s stored: quiz=%s user=%s score=%d/%d dropped=%d",
            attempt.id, quiz.id, identity.user_id, result.score, result.total_points,
            len(submitted) - len(result.answers),
        )
        return {
            'id': attempt.id,
            'quiz_id': quiz.id,
            'user_id': identity.user_id,
            'score': result.score,
            'total_points': result.total_points,
            'percentage': pct,
            'passed': pct >= quiz.passing_score,
            'completed_at': _iso(attempt.completed_at),
            'answers': [
                {'question_id': g.question_id, 'selected_option_id': g.selected_option_id, 'is_correct': g.is_correct}
                for g in result.answers
            ],
        }

    def history(self, identity: Identity, quiz_id: Optional[str] = None, user_id: Optional[str] = None) -> List[dict]:
        """Attempt history, newest first. Trainees only ever see their own attempts."""
        if not identity.is_admin:
            if user_id and user_id != identity.user_id:
                raise ForbiddenError('cannot view attempts of other users')
            user_id = identity.user_id
        records = self.attempt_repo.fetch_attempt_history(quiz_id=quiz_id, user_id=user_id)
        return [_attempt_summary(r) for r in records]

    def get_attempt(self, identity: Identity, attempt_id: str) -> dict:
        attempt = self.attempt_repo.get(attempt_id)
        if not attempt or (not identity.is_admin and attempt.user_id != identity.user_id):
            raise NotFoundError('Attempt not found')
        answers = self.attempt_repo.list_answers(attempt.id)
        return {
            'id': attempt.id,
            'quiz_id': attempt.quiz_id,
            'user_id': attempt.user_id,
            'score': attempt.score,
            'total_points': attempt.total_points,
            'percentage': percentage(attempt.score, attempt.total_points),
            'completed_at': _iso(attempt.completed_at),
            'answers': [
                {'question_id': a.question_id, 'selected_option_id': a.selected_option_id, 'is_correct': a.is_correct}
                for a in answers
            ],
        }


class AnalyticsService:
    """Admin analytics over the full attempt history."""
    def __init__(self, session: Session):
        self.session = session
        self.attempt_repo = repositories.AttemptRepository(session)

    def summary(self, identity: Identity, leaderboard_size: Optional[int] = None) -> dict:
        _require_admin(identity)
        history = self.attempt_repo.fetch_attempt_history()
        result = summarize(history, leaderboard_size or settings.LEADERBOARD_SIZE)
        return {
            'total_attempts': result.total_attempts,
            'quiz_analytics': [
                {'quiz_id': q.quiz_id, 'quiz_title': q.quiz_title, 'attempts': q.attempts, 'average_score': q.average_score}
                for q in result.quiz_analytics
            ],
            'top_trainees': [
                {'user_id': t.user_id, 'user_name': t.user_name, 'attempts': t.attempts, 'average_score': t.average_score}
                for t in result.top_trainees
            ],
        }


def _manual_payload(manual: models.Manual) -> dict:
    return {
        'id': manual.id,
        'title': manual.title,
        'category': manual.category,
        'content': manual.content,
        'tags': list(manual.tags or []),
        'pdf_url': manual.pdf_url,
        'created_at': _iso(manual.created_at),
        'updated_at': _iso(manual.updated_at),
    }


def manual_matches(manual: models.Manual, query: Optional[str] = None, category: Optional[str] = None) -> bool:
    """Case-insensitive search over title, content and tags plus an exact category filter."""
    if category and category != 'all' and manual.category != category:
        return False
    if not query:
        return True
    needle = query.lower()
    return (
        needle in manual.title.lower()
        or needle in (manual.content or '').lower()
        or any(needle in tag.lower() for tag in (manual.tags or []))
    )


class ManualService:
    """Reference manuals: admins author, everyone reads."""
    def __init__(self, session: Session):
        self.session = session
        self.manual_repo = repositories.ManualRepository(session)

    def list_manuals(self, query: Optional[str] = None, category: Optional[str] = None) -> List[dict]:
        return [_manual_payload(m) for m in self.manual_repo.list_manuals() if manual_matches(m, query, category)]

    def categories(self) -> List[str]:
        """Distinct categories in first-seen order."""
        seen = {}
        for m in self.manual_repo.list_manuals():
            seen.setdefault(m.category, None)
        return list(seen)

    def get_manual(self, manual_id: str) -> dict:
        manual = self.manual_repo.get(manual_id)
        if not manual:
            raise NotFoundError('Manual not found')
        return _manual_payload(manual)

    def create_manual(self, identity: Identity, payload) -> dict:
        _require_admin(identity)
        manual = models.Manual(
            title=payload.title,
            category=payload.category,
            content=payload.content,
            tags=list(payload.tags),
            pdf_url=payload.pdf_url,
            created_by=identity.user_id,
        )
        manual = self.manual_repo.create(manual)
        logger.info("manual %s created by %s", manual.id, identity.user_id)
        return _manual_payload(manual)

    def update_manual(self, identity: Identity, manual_id: str, payload) -> dict:
        _require_admin(identity)
        manual = self.manual_repo.get(manual_id)
        if not manual:
            raise NotFoundError('Manual not found')
        fields = payload.model_dump(exclude_unset=True)
        for required in ('title', 'category'):
            if required in fields and fields[required] is None:
                raise ValidationFailed(f'{required} cannot be empty')
        if 'tags' in fields and fields['tags'] is None:
            fields['tags'] = []
        return _manual_payload(self.manual_repo.update(manual, fields))

    def delete_manual(self, identity: Identity, manual_id: str) -> None:
        _require_admin(identity)
        manual = self.manual_repo.get(manual_id)
        if not manual:
            raise NotFoundError('Manual not found')
        self.manual_repo.delete(manual)
        logger.info("manual %s deleted by %s", manual_id, identity.user_id)


class FeedbackService:
    """Trainee feedback and admin responses."""
    def __init__(self, session: Session):
        self.session = session
        self.feedback_repo = repositories.FeedbackRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def submit(self, identity: Identity, subject: str, message: str) -> dict:
        feedback = models.Feedback(user_id=identity.user_id, subject=subject, message=message)
        feedback = self.feedback_repo.create(feedback)
        logger.info("feedback %s submitted by %s", feedback.id, identity.user_id)
        return self._payload(feedback)

    def list_feedback(self, identity: Identity) -> List[dict]:
        """Admins see every item; trainees only their own."""
        user_id = None if identity.is_admin else identity.user_id
        return [self._payload(f) for f in self.feedback_repo.list_feedback(user_id=user_id)]

    def set_status(self, identity: Identity, feedback_id: str, status: models.FeedbackStatus) -> dict:
        _require_admin(identity)
        feedback = self._get(feedback_id)
        return self._payload(self.feedback_repo.set_status(feedback, status))

    def add_comment(self, identity: Identity, feedback_id: str, comment: str) -> dict:
        _require_admin(identity)
        feedback = self._get(feedback_id)
        row = self.feedback_repo.add_comment(
            models.AdminComment(feedback_id=feedback.id, admin_id=identity.user_id, comment=comment)
        )
        return self._comment_payload(row, self.user_repo.names_for([row.admin_id]))

    def _get(self, feedback_id: str) -> models.Feedback:
        feedback = self.feedback_repo.get(feedback_id)
        if not feedback:
            raise NotFoundError('Feedback not found')
        return feedback

    def _comment_payload(self, comment: models.AdminComment, names: Dict[str, Optional[str]]) -> dict:
        return {
            'id': comment.id,
            'feedback_id': comment.feedback_id,
            'admin_id': comment.admin_id,
            'admin_name': names.get(comment.admin_id) or 'Admin',
            'comment': comment.comment,
            'created_at': _iso(comment.created_at),
        }

    def _payload(self, feedback: models.Feedback) -> dict:
        comments = self.feedback_repo.list_comments(feedback.id)
        names = self.user_repo.names_for([feedback.user_id] + [c.admin_id for c in comments])
        return {
            'id': feedback.id,
            'user_id': feedback.user_id,
            'user_name': names.get(feedback.user_id) or 'Unknown',
            'subject': feedback.subject,
            'message': feedback.message,
            'status': feedback.status.value,
            'created_at': _iso(feedback.created_at),
            'admin_comments': [self._comment_payload(c, names) for c in comments],
        }
