"""
HTTP surface for attemptlock.

Wraps one SessionLockRule on SQLite for hosts that call the lock protocol
over HTTP instead of in-process. Identity comes from request headers:

    X-User-Id       acting user
    X-Session-Key   session token of the browser session
    User-Agent      as sent by the browser

The client IP is the socket peer, or the first X-Forwarded-For entry when
trust_proxy is set.
"""

from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from . import config
from .db import Database, SqliteAttemptDirectory, SqliteStorage
from .errors import AuthorizationDenied, StorageError, UnknownAttemptError
from .events import AttemptLifecycleEvent, LifecycleKind
from .fingerprint import RequestContext
from .gate import AccessDecision, AccessOutcome
from .logging_config import set_request_id
from .models import Attempt, AttemptState
from .rules import ONE_CONNECTION, RuleVariant, SessionLockRule, build_registry
from .schemas import (
    AccessResponse,
    AttemptIn,
    BulkUnlockRequest,
    BulkUnlockResponse,
    QuizSettingsIn,
    QuizSettingsOut,
    ReportRow,
    UnlockResponse,
)
from .store import table_prefix
from .unlock import (
    CAP_ALLOW_CHANGE,
    CAP_EDIT_ENABLED,
    CapabilityChecker,
    StaticCapabilityChecker,
    UnlockResult,
    UnlockStatus,
)

HTTP_LOCKED = 423

_TERMINAL_STATES = {
    LifecycleKind.SUBMITTED: AttemptState.FINISHED,
    LifecycleKind.ABANDONED: AttemptState.ABANDONED,
}


def _unlock_response(result: UnlockResult) -> UnlockResponse:
    entry = result.audit_entry
    return UnlockResponse(
        attempt_id=result.attempt_id,
        status=result.status.value,
        had_lock=result.had_lock,
        unlocked_by=entry.unlocked_by if entry else None,
        time_unlocked=entry.time_unlocked if entry else None,
    )


def create_app(
    rule_config: Optional[config.RuleConfig] = None,
    db_path: Optional[str] = None,
    variant: RuleVariant = ONE_CONNECTION,
    capabilities: Optional[CapabilityChecker] = None,
    trust_proxy: bool = False
) -> FastAPI:
    """Build the app with its own database and rule instance."""
    rule_config = rule_config or config.load_rule_config(variant.component)
    capabilities = capabilities or StaticCapabilityChecker(config.capability_grants())

    db = Database(db_path or config.DB_PATH)
    storage = SqliteStorage(db, prefix=table_prefix(variant.component))
    storage.init_db()
    attempts = SqliteAttemptDirectory(db)
    attempts.init_db()

    registry = build_registry(
        {variant.component: storage},
        attempts,
        configs={variant.component: rule_config},
        capabilities=capabilities,
    )
    rule: SessionLockRule = registry.get(variant.component)

    app = FastAPI(title=f"attemptlock ({variant.title})")
    app.state.rule = rule
    app.state.storage = storage
    app.state.attempts = attempts
    app.state.registry = registry

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError):
        return JSONResponse(status_code=500, content={"detail": "INTERNAL_ERROR"})

    def request_context(request: Request, x_user_id: Optional[int] = Header(None)) -> RequestContext:
        client_ip = request.client.host if request.client else None
        if trust_proxy:
            forwarded = request.headers.get("x-forwarded-for", "")
            if forwarded:
                client_ip = forwarded.split(",")[0].strip()
        return RequestContext(
            session_token=request.headers.get("x-session-key", ""),
            client_ip=client_ip,
            user_agent=request.headers.get("user-agent"),
            user_id=x_user_id,
        )

    def current_user(x_user_id: Optional[int] = Header(None)) -> int:
        if x_user_id is None or x_user_id <= 0:
            raise HTTPException(401, "UNAUTHENTICATED")
        return x_user_id

    def require(user_id: int, capability: str, quiz_id: int) -> None:
        if not capabilities.has_capability(user_id, capability, quiz_id):
            raise HTTPException(403, "ACCESS_DENIED")

    def access_response(decision: AccessDecision, attempt: Attempt, ctx: RequestContext):
        if decision.outcome == AccessOutcome.ERROR:
            raise HTTPException(500, "INTERNAL_ERROR")
        body = AccessResponse(
            attempt_id=decision.attempt_id,
            decision=decision.outcome.value,
            reason=decision.reason.value,
        )
        if decision.outcome == AccessOutcome.PASS:
            return body
        body.message = rule.block_message()
        if ctx.user_id and capabilities.has_capability(ctx.user_id, CAP_ALLOW_CHANGE, attempt.quiz_id):
            body.manage_url = f"/quizzes/{attempt.quiz_id}/report"
        return JSONResponse(status_code=HTTP_LOCKED, content=body.model_dump())

    def load_attempt(attempt_id: int) -> Attempt:
        attempt = attempts.get(attempt_id)
        if attempt is None:
            raise HTTPException(404, "NOT_FOUND")
        return attempt

    @app.get("/health")
    def health():
        return {"status": "ok", "component": variant.component, "db": storage.stats()}

    @app.put("/quizzes/{quiz_id}/settings", response_model=QuizSettingsOut)
    def save_settings(quiz_id: int, body: QuizSettingsIn, user_id: int = Depends(current_user)):
        can_edit = capabilities.has_capability(user_id, CAP_EDIT_ENABLED, quiz_id)
        saved = rule.save_settings(quiz_id, body.enabled, can_edit=can_edit)
        return QuizSettingsOut(quiz_id=quiz_id, enabled=rule.is_applicable(quiz_id), saved=saved)

    @app.delete("/quizzes/{quiz_id}")
    def delete_quiz(quiz_id: int, user_id: int = Depends(current_user)):
        require(user_id, CAP_EDIT_ENABLED, quiz_id)
        rule.delete_settings(quiz_id)
        return {"quiz_id": quiz_id, "deleted": True}

    @app.post("/attempts", status_code=201)
    def register_attempt(body: AttemptIn):
        attempt = Attempt(**body.model_dump())
        attempts.upsert(attempt)
        return attempt.to_dict()

    @app.post("/attempts/{attempt_id}/access", response_model=AccessResponse)
    def check_access(attempt_id: int, ctx: RequestContext = Depends(request_context)):
        attempt = load_attempt(attempt_id)
        return access_response(rule.check_access(attempt, ctx), attempt, ctx)

    @app.post("/attempts/{attempt_id}/confirm", response_model=AccessResponse)
    def confirm(attempt_id: int, ctx: RequestContext = Depends(request_context)):
        attempt = load_attempt(attempt_id)
        try:
            decision = rule.confirm(attempt_id, ctx)
        except UnknownAttemptError:
            raise HTTPException(404, "NOT_FOUND")
        return access_response(decision, attempt, ctx)

    @app.post("/attempts/{attempt_id}/events/{kind}")
    def lifecycle_event(attempt_id: int, kind: LifecycleKind):
        if kind == LifecycleKind.DELETED:
            attempts.remove(attempt_id)
        elif not attempts.set_state(attempt_id, _TERMINAL_STATES[kind]):
            raise HTTPException(404, "NOT_FOUND")
        registry.dispatcher.emit(AttemptLifecycleEvent(kind=kind, attempt_id=attempt_id))
        return {"attempt_id": attempt_id, "kind": kind.value}

    @app.post("/attempts/{attempt_id}/unlock", response_model=UnlockResponse)
    def unlock(attempt_id: int, user_id: int = Depends(current_user)):
        try:
            result = rule.unlock(attempt_id, user_id)
        except AuthorizationDenied:
            raise HTTPException(403, "ACCESS_DENIED")
        if result.status == UnlockStatus.NOT_FOUND:
            raise HTTPException(404, "NOT_FOUND")
        if result.status == UnlockStatus.INELIGIBLE:
            raise HTTPException(409, "NOT_UNLOCKABLE")
        return _unlock_response(result)

    @app.post("/quizzes/{quiz_id}/unlock", response_model=BulkUnlockResponse)
    def unlock_many(quiz_id: int, body: BulkUnlockRequest, user_id: int = Depends(current_user)):
        require(user_id, CAP_ALLOW_CHANGE, quiz_id)
        try:
            results = rule.unlocks.unlock_many_results(body.attempt_ids, user_id, quiz_id=quiz_id)
        except AuthorizationDenied:
            raise HTTPException(403, "ACCESS_DENIED")
        return BulkUnlockResponse(
            unlocked=sum(1 for r in results if r.succeeded()),
            results=[_unlock_response(r) for r in results],
        )

    @app.get("/quizzes/{quiz_id}/report", response_model=List[ReportRow])
    def report(quiz_id: int, user_id: int = Depends(current_user)):
        require(user_id, CAP_ALLOW_CHANGE, quiz_id)
        return [row.to_dict() for row in rule.report(quiz_id)]

    return app
