# app.py — arithmetic practice API
# - Thin HTTP adapter over practice_service.PracticeService
# - Bearer/x-token identity, same token map as the rest of the platform

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from env_validation import get_env_mapping
from practice_service import ANONYMOUS_PROBLEM_COUNT, PracticeService, create_default_service
from schemas import AggregateStats, Operation, ServiceError

logger = logging.getLogger(__name__)

_SERVICE: Optional[PracticeService] = None


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global _SERVICE
    try:
        if _SERVICE is None:
            _SERVICE = create_default_service()
        loaded = load_tokens()
        logger.info(
            "Practice service ready (tiers: %s, tokens: %d)", type(_SERVICE.tier_store).__name__, loaded
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Arithmetic Practice", version="0.1.0", lifespan=_lifespan)

TOKENS = {}

_PROTECTED_PREFIXES = ("/practice/sessions", "/practice/mastery-test")


def get_service() -> PracticeService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = create_default_service()
    return _SERVICE


def set_service(service: Optional[PracticeService]) -> None:
    global _SERVICE
    _SERVICE = service


def register_token(token: str, user_id: str) -> None:
    """Accept ``token`` as the identity of ``user_id`` on protected routes."""

    if not token or not user_id:
        raise ValueError("token and user_id are required")
    TOKENS[token] = user_id


def load_tokens() -> int:
    """Register every pair from ``PRACTICE_TOKENS`` (``token:user,...``)."""

    tokens = get_env_mapping("PRACTICE_TOKENS")
    for token, user_id in tokens.items():
        register_token(token, user_id)
    return len(tokens)


def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path.rstrip("/")


def _extract_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    candidate = header_value.strip()
    if not candidate:
        return None
    if " " in candidate:
        prefix, token = candidate.split(" ", 1)
        if prefix.lower() in {"bearer", "token"}:
            candidate = token.strip()
        else:
            candidate = token.strip() or prefix.strip()
    return candidate or None


def _authenticate_request(request: Request) -> Optional[str]:
    header_token = _extract_token(request.headers.get("authorization"))
    if header_token and header_token in TOKENS:
        return TOKENS[header_token]
    alt_header = request.headers.get("x-token")
    if alt_header and alt_header in TOKENS:
        return TOKENS[alt_header]
    query_token = request.query_params.get("token")
    if query_token and query_token in TOKENS:
        return TOKENS[query_token]
    return None


@app.middleware("http")
async def _enforce_token(request: Request, call_next):
    normalized_path = _normalize_path(request.url.path)
    if normalized_path.startswith(_PROTECTED_PREFIXES):
        user_id = _authenticate_request(request)
        if not user_id:
            return Response(
                status_code=401,
                content=json.dumps({"detail": "missing or invalid token"}),
                media_type="application/json",
            )
        request.state.user_id = user_id
    return await call_next(request)


_ERROR_STATUS = {
    "Unauthorized": 401,
    "UserNotFound": 404,
    "SessionNotFound": 404,
    "NoCurrentQuestion": 409,
    "MasteryTestUnavailable": 409,
    "PersistenceFailed": 503,
}


def _respond(result: Union[BaseModel, ServiceError]) -> Any:
    if isinstance(result, ServiceError):
        raise HTTPException(
            status_code=_ERROR_STATUS.get(result.error, 400),
            detail={"error": result.error, "message": result.message},
        )
    return result.model_dump(mode="json")


def _user_id(request: Request) -> Optional[str]:
    return getattr(request.state, "user_id", None)


class StartSessionBody(BaseModel):
    operation: Operation


class AnswerBody(BaseModel):
    user_answer: Union[float, str]
    latency_ms: float = Field(default=0.0, ge=0.0)
    help_used: bool = False


class HintBody(BaseModel):
    user_answer: Optional[Union[float, str]] = None
    latency_ms: float = Field(default=0.0, ge=0.0)
    problem_text: Optional[str] = None
    correct_answer: Optional[float] = None


class EndSessionBody(BaseModel):
    aggregate_stats: Optional[AggregateStats] = None


class MasteryTestBody(BaseModel):
    operation: Operation
    correct: int = Field(ge=0)
    total: int = Field(ge=0)


@app.post("/practice/sessions")
def start_session(body: StartSessionBody, request: Request):
    return _respond(get_service().initialize_session(_user_id(request), body.operation))


@app.post("/practice/sessions/{session_id}/answers")
def submit_answer(session_id: str, body: AnswerBody, request: Request):
    result = get_service().submit_answer(
        session_id,
        body.user_answer,
        body.latency_ms,
        help_used=body.help_used,
        user_id=_user_id(request),
    )
    return _respond(result)


@app.post("/practice/sessions/{session_id}/hint")
def request_hint(session_id: str, body: HintBody, request: Request):
    result = get_service().request_hint(
        session_id,
        body.user_answer,
        body.latency_ms,
        problem_text=body.problem_text,
        correct_answer=body.correct_answer,
        user_id=_user_id(request),
    )
    return _respond(result)


@app.post("/practice/sessions/{session_id}/end")
def end_session(session_id: str, request: Request, body: Optional[EndSessionBody] = None):
    stats = body.aggregate_stats if body is not None else None
    return _respond(get_service().end_session(session_id, stats, user_id=_user_id(request)))


@app.get("/practice/sessions/{session_id}")
def session_status(session_id: str, request: Request):
    status = get_service().get_session_status(session_id, user_id=_user_id(request))
    return status.model_dump(mode="json")


@app.get("/practice/anonymous")
def anonymous_problems(operation: Operation, count: int = ANONYMOUS_PROBLEM_COUNT):
    if count < 1 or count > 100:
        raise HTTPException(status_code=422, detail="count must be between 1 and 100")
    items = get_service().anonymous_problems(operation, count)
    return {"operation": operation, "problems": [item.model_dump(mode="json") for item in items]}


@app.get("/practice/mastery-test")
def get_mastery_test(operation: Operation, request: Request):
    return _respond(get_service().get_mastery_test(_user_id(request), operation))


@app.post("/practice/mastery-test")
def complete_mastery_test(body: MasteryTestBody, request: Request):
    result = get_service().complete_mastery_test(
        _user_id(request), body.operation, body.correct, body.total
    )
    return _respond(result)
