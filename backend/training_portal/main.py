"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the training portal backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Service errors are translated to
HTTP responses by a single exception handler.

Endpoints implemented:
- POST /auth/register, POST /auth/login, GET /auth/me
- PUT /users/{user_id}/role (admin)
- GET/POST /quizzes, GET/PUT/DELETE /quizzes/{quiz_id}
- POST /quizzes/{quiz_id}/attempts
- GET /attempts, GET /attempts/{attempt_id}
- GET /analytics (admin)
- GET/POST /manuals, GET /manuals/categories, GET/PUT/DELETE /manuals/{manual_id}
- GET/POST /feedback, PUT /feedback/{id}/status, POST /feedback/{id}/comments
- GET /health
"""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from . import services
from .auth import get_current_user, require_admin
from .cache import QuizCache
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import PortalError
from .schemas import (
    CommentIn,
    FeedbackIn,
    FeedbackStatusIn,
    LoginIn,
    ManualIn,
    ManualUpdate,
    QuizIn,
    QuizSubmission,
    QuizUpdate,
    RegisterIn,
    RoleIn,
)
from .services import Identity
from .utils.rate_limit import InMemoryRateLimiter

app = FastAPI(title="Training Portal API")
logger = logging.getLogger("portal.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
app.state.quiz_cache = QuizCache()
_login_rate_limiter = InMemoryRateLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path != "/health":
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    content = {"detail": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


def get_quiz_cache(request: Request) -> QuizCache:
    return request.app.state.quiz_cache


def _enforce_login_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _login_rate_limiter.allow(
        key, settings.LOGIN_RATE_LIMIT_PER_MIN, settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Create a trainee account and return a token for it, like a login."""
    auth = services.AuthService(db)
    auth.register(payload.username, payload.email, payload.password, payload.full_name)
    return auth.authenticate(payload.username, payload.password)


@app.post('/auth/login')
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate with username or email and return a signed JWT.

    When `role` is supplied the account must hold that role.
    """
    _enforce_login_rate_limit(request)
    return services.AuthService(db).authenticate(payload.username, payload.password, payload.role)


@app.get('/auth/me')
def me(identity: Identity = Depends(get_current_user)):
    return {
        'id': identity.user_id,
        'username': identity.username,
        'email': identity.email,
        'full_name': identity.full_name,
        'role': identity.role.value,
    }


@app.put('/users/{user_id}/role')
def set_user_role(user_id: str, payload: RoleIn, db: Session = Depends(get_session), identity: Identity = Depends(require_admin)):
    return services.AuthService(db).set_role(user_id, payload.role)


@app.get('/quizzes')
def list_quizzes(db: Session = Depends(get_session), cache: QuizCache = Depends(get_quiz_cache),
                 identity: Identity = Depends(get_current_user)):
    """List quizzes newest first. Correct options are only shown to admins."""
    return services.QuizService(db, cache).list_quizzes(identity)


@app.post('/quizzes', status_code=201)
def create_quiz(payload: QuizIn, db: Session = Depends(get_session), cache: QuizCache = Depends(get_quiz_cache),
                identity: Identity = Depends(require_admin)):
    return services.QuizService(db, cache).create_quiz(identity, payload)


@app.get('/quizzes/{quiz_id}')
def get_quiz(quiz_id: str, db: Session = Depends(get_session), cache: QuizCache = Depends(get_quiz_cache),
             identity: Identity = Depends(get_current_user)):
    return services.QuizService(db, cache).get_quiz(identity, quiz_id)


@app.put('/quizzes/{quiz_id}')
def update_quiz(quiz_id: str, payload: QuizUpdate, db: Session = Depends(get_session),
                cache: QuizCache = Depends(get_quiz_cache), identity: Identity = Depends(require_admin)):
    """Update quiz metadata; a `questions` list replaces every question."""
    return services.QuizService(db, cache).update_quiz(identity, quiz_id, payload)


@app.delete('/quizzes/{quiz_id}', status_code=204)
def delete_quiz(quiz_id: str, db: Session = Depends(get_session), cache: QuizCache = Depends(get_quiz_cache),
                identity: Identity = Depends(require_admin)):
    services.QuizService(db, cache).delete_quiz(identity, quiz_id)
    return Response(status_code=204)


@app.post('/quizzes/{quiz_id}/attempts')
def submit_attempt(quiz_id: str, submission: QuizSubmission, db: Session = Depends(get_session),
                   cache: QuizCache = Depends(get_quiz_cache), identity: Identity = Depends(get_current_user)):
    """Grade a submitted quiz and store the attempt.

    The body holds `{question_id, selected_option_id}` items; answers for
    questions outside the quiz are ignored.
    """
    answers = [{'question_id': a.question_id, 'selected_option_id': a.selected_option_id} for a in submission.answers]
    return services.AttemptService(db, cache).submit(identity, quiz_id, answers)


@app.get('/attempts')
def list_attempts(quiz_id: Optional[str] = None, user_id: Optional[str] = None, db: Session = Depends(get_session),
                  cache: QuizCache = Depends(get_quiz_cache), identity: Identity = Depends(get_current_user)):
    return services.AttemptService(db, cache).history(identity, quiz_id=quiz_id, user_id=user_id)


@app.get('/attempts/{attempt_id}')
def get_attempt(attempt_id: str, db: Session = Depends(get_session), cache: QuizCache = Depends(get_quiz_cache),
                identity: Identity = Depends(get_current_user)):
    return services.AttemptService(db, cache).get_attempt(identity, attempt_id)


@app.get('/analytics')
def analytics(limit: Optional[int] = None, db: Session = Depends(get_session), identity: Identity = Depends(require_admin)):
    """Per-quiz performance and the trainee leaderboard over all attempts."""
    if limit is not None and limit < 1:
        raise HTTPException(status_code=400, detail='limit must be at least 1')
    return services.AnalyticsService(db).summary(identity, leaderboard_size=limit)


@app.get('/manuals')
def list_manuals(q: Optional[str] = None, category: Optional[str] = None, db: Session = Depends(get_session),
                 identity: Identity = Depends(get_current_user)):
    """List manuals filtered by free-text `q` and `category` (`all` disables the filter)."""
    return services.ManualService(db).list_manuals(query=q, category=category)


@app.get('/manuals/categories')
def manual_categories(db: Session = Depends(get_session), identity: Identity = Depends(get_current_user)):
    return services.ManualService(db).categories()


@app.get('/manuals/{manual_id}')
def get_manual(manual_id: str, db: Session = Depends(get_session), identity: Identity = Depends(get_current_user)):
    return services.ManualService(db).get_manual(manual_id)


@app.post('/manuals', status_code=201)
def create_manual(payload: ManualIn, db: Session = Depends(get_session), identity: Identity = Depends(require_admin)):
    return services.ManualService(db).create_manual(identity, payload)


@app.put('/manuals/{manual_id}')
def update_manual(manual_id: str, payload: ManualUpdate, db: Session = Depends(get_session),
                  identity: Identity = Depends(require_admin)):
    return services.ManualService(db).update_manual(identity, manual_id, payload)


@app.delete('/manuals/{manual_id}', status_code=204)
def delete_manual(manual_id: str, db: Session = Depends(get_session), identity: Identity = Depends(require_admin)):
    services.ManualService(db).delete_manual(identity, manual_id)
    return Response(status_code=204)


@app.get('/feedback')
def list_feedback(db: Session = Depends(get_session), identity: Identity = Depends(get_current_user)):
    """Admins get every feedback item; trainees get their own."""
    return services.FeedbackService(db).list_feedback(identity)


@app.post('/feedback', status_code=201)
def submit_feedback(payload: FeedbackIn, db: Session = Depends(get_session), identity: Identity = Depends(get_current_user)):
    return services.FeedbackService(db).submit(identity, payload.subject, payload.message)


@app.put('/feedback/{feedback_id}/status')
def set_feedback_status(feedback_id: str, payload: FeedbackStatusIn, db: Session = Depends(get_session),
                        identity: Identity = Depends(require_admin)):
    return services.FeedbackService(db).set_status(identity, feedback_id, payload.status)


@app.post('/feedback/{feedback_id}/comments', status_code=201)
def add_feedback_comment(feedback_id: str, payload: CommentIn, db: Session = Depends(get_session),
                         identity: Identity = Depends(require_admin)):
    return services.FeedbackService(db).add_comment(identity, feedback_id, payload.comment)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
