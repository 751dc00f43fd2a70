"""FastAPI application exposing account and saved-session endpoints."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Match

from . import services, users
from .auth import AuthService, CurrentContext, extract_token, get_auth_service
from .config import Settings, settings as default_settings
from .context_store import AuthenticatedContext, ContextStore, InMemoryContextStore
from .database import configure_database, init_db
from .errors import CalcStoreError


logger = logging.getLogger(__name__)

# Requests by method, route template and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


class RegisterRequest(BaseModel):
    """Request body for registering a new user."""

    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """Request body for user login."""

    username: Optional[str] = None
    password: Optional[str] = None


class SaveSessionRequest(BaseModel):
    """Request body for saving a named session."""

    session_name: Optional[str] = Field(None, alias="sessionName")
    session_data: Any = Field(None, alias="sessionData")


class AuthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    user_id: int = Field(..., alias="userId")
    username: str


class SuccessResponse(BaseModel):
    success: bool = True


class MessageResponse(SuccessResponse):
    message: str


class SaveSessionResponse(MessageResponse):
    model_config = ConfigDict(populate_by_name=True)

    session_id: int = Field(..., alias="sessionId")


class SessionSummary(BaseModel):
    """A saved session without its payload."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    session_name: str
    created_at: datetime
    updated_at: datetime


class SessionListResponse(SuccessResponse):
    sessions: List[SessionSummary]


class SessionDataResponse(SuccessResponse):
    model_config = ConfigDict(populate_by_name=True)

    session_data: Any = Field(..., alias="sessionData")


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def handle_calcstore_error(request: Request, exc: CalcStoreError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message)


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("rejected malformed request %s %s", request.method, request.url.path)
    return _error_response(400, "Invalid request body")


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error for %s %s", request.method, request.url.path)
    return _error_response(500, "Server error")


def _endpoint_label(request: Request) -> str:
    """Return the matched route template so path parameters share one series."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match != Match.NONE:
            return getattr(route, "path", request.url.path)
    return "unmatched"


def _set_session_cookie(response: Response, context: AuthenticatedContext, cfg: Settings) -> None:
    response.set_cookie(
        key=cfg.session_cookie_name,
        value=context.token,
        max_age=cfg.session_ttl_seconds,
        httponly=True,
        secure=cfg.session_cookie_secure,
        samesite=cfg.session_cookie_samesite,
        path="/",
    )


def create_app(
    settings: Settings | None = None, context_store: ContextStore | None = None
) -> FastAPI:
    cfg = settings or default_settings
    engine = configure_database(cfg.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        if cfg.seed_demo_users:
            users.seed_demo_users()
        yield

    app = FastAPI(title=cfg.api_title, lifespan=lifespan)
    app.state.settings = cfg
    if context_store is None:
        context_store = InMemoryContextStore()
    app.state.auth_service = AuthService(context_store, cfg.session_ttl_seconds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CalcStoreError, handle_calcstore_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log incoming requests and their outcomes while updating metrics."""
        endpoint = _endpoint_label(request)
        logger.info("request %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code),
            ).inc()
            logger.info(
                "response %s %s status %s",
                request.method,
                request.url.path,
                response.status_code,
            )
            return response
        except Exception:
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=endpoint,
                status="500",
            ).inc()
            logger.exception(
                "error handling %s %s", request.method, request.url.path
            )
            raise

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    @app.post("/api/register", response_model=AuthResponse)
    def register(
        payload: RegisterRequest,
        response: Response,
        service: AuthService = Depends(get_auth_service),
    ):
        context = service.register(payload.username, payload.email, payload.password)
        _set_session_cookie(response, context, cfg)
        return AuthResponse(user_id=context.user_id, username=context.username)

    @app.post("/api/login", response_model=AuthResponse)
    def login(
        payload: LoginRequest,
        response: Response,
        service: AuthService = Depends(get_auth_service),
    ):
        context = service.login(payload.username, payload.password)
        _set_session_cookie(response, context, cfg)
        return AuthResponse(user_id=context.user_id, username=context.username)

    @app.post("/api/logout", response_model=SuccessResponse)
    def logout(
        response: Response,
        token: Optional[str] = Depends(extract_token),
        service: AuthService = Depends(get_auth_service),
    ):
        service.logout(token)
        response.delete_cookie(key=cfg.session_cookie_name, path="/")
        return SuccessResponse()

    @app.get("/api/user", response_model=AuthResponse)
    def whoami(context: CurrentContext):
        return AuthResponse(user_id=context.user_id, username=context.username)

    @app.post("/api/sessions", response_model=SaveSessionResponse)
    def save_session(payload: SaveSessionRequest, context: CurrentContext):
        """Create or replace a named session owned by the caller."""
        result = services.upsert_session(
            context.user_id, payload.session_name, payload.session_data
        )
        return SaveSessionResponse(
            session_id=result.id,
            message="Session saved" if result.created else "Session updated",
        )

    @app.get("/api/sessions", response_model=SessionListResponse)
    def list_sessions(context: CurrentContext):
        return SessionListResponse(sessions=services.list_sessions(context.user_id))

    @app.get("/api/sessions/{session_id}", response_model=SessionDataResponse)
    def get_session(session_id: str, context: CurrentContext):
        data = services.get_session_data(context.user_id, session_id)
        return SessionDataResponse(session_data=data)

    @app.delete("/api/sessions/{session_id}", response_model=MessageResponse)
    def delete_session(session_id: str, context: CurrentContext):
        services.delete_session(context.user_id, session_id)
        return MessageResponse(message="Session deleted")

    return app


app = create_app()
