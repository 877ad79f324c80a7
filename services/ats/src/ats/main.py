from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ats.cache import CacheGateway, RedisCacheGateway, VersionedJobCache
from ats.config import Settings
from ats.errors import AtsError, Forbidden, Unauthorized
from ats.metrics import MetricsStore
from ats.models import (
    ApplicationCreateRequest,
    ApplicationDetail,
    ApplicationListing,
    ApplicationListQuery,
    ApplicationStatus,
    ApplicationStatusUpdateRequest,
    AuthenticatedUser,
    CandidateProfile,
    CandidateRegisterRequest,
    Job,
    JobCreateRequest,
    JobListing,
    LoginRequest,
    LoginResponse,
    MetricsSnapshot,
    RefreshTokenRequest,
    Role,
    SignupRequest,
    TokenPair,
    User,
)
from ats.repository import AtsRepository
from ats.security import PasswordHasher, TokenIssuer
from ats.services import ApplicationService, AuthService, CandidateService, JobService

LOGGER = logging.getLogger("ats.api")
UNMATCHED_ROUTE = "<unmatched>"


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ROUTE)


def create_app(
    *,
    settings: Settings | None = None,
    database_path: str | None = None,
    cache_gateway: CacheGateway | None = None,
) -> FastAPI:
    resolved_settings = settings or Settings.from_env()
    if database_path:
        resolved_settings = resolved_settings.model_copy(update={"database_path": database_path})
    logging.getLogger("ats").setLevel(resolved_settings.log_level)

    repository = AtsRepository(database_path=resolved_settings.database_path)
    resolved_gateway = cache_gateway
    if resolved_gateway is None and resolved_settings.redis_url:
        resolved_gateway = RedisCacheGateway.from_url(
            resolved_settings.redis_url,
            timeout_seconds=resolved_settings.redis_timeout_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        metrics = MetricsStore()
        if isinstance(resolved_gateway, RedisCacheGateway):
            if not await run_in_threadpool(resolved_gateway.ping):
                LOGGER.warning("Redis is unreachable at startup; job listings will bypass cache")
        elif resolved_gateway is None:
            LOGGER.warning("No cache configured; job listings will always query the database")

        tokens = TokenIssuer(resolved_settings)
        job_cache = VersionedJobCache(resolved_gateway, metrics=metrics)
        app.state.settings = resolved_settings
        app.state.repository = repository
        app.state.metrics = metrics
        app.state.job_cache = job_cache
        app.state.tokens = tokens
        app.state.auth_service = AuthService(
            repository,
            PasswordHasher(resolved_settings.password_hash_rounds),
            tokens,
        )
        app.state.job_service = JobService(repository, job_cache)
        app.state.candidate_service = CandidateService(repository)
        app.state.application_service = ApplicationService(repository)
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)
            if isinstance(resolved_gateway, RedisCacheGateway):
                await run_in_threadpool(resolved_gateway.close)

    app = FastAPI(title="ATS API", version="1.0.0", lifespan=lifespan)

    @app.exception_handler(AtsError)
    async def ats_error_handler(request: Request, exc: AtsError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.error(
                "request_id=%s %s %s failed: %s",
                getattr(request.state, "request_id", None),
                request.method,
                request.url.path,
                exc.message,
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        failure: Exception | None = None

        try:
            response = await call_next(request)
        except Exception as exc:
            failure = exc
            response = JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        route = _route_template(request)
        request.app.state.metrics.observe(
            method=request.method,
            route=route,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id

        record = {
            "event": "request_complete",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "route": route,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 3),
        }
        if failure is None:
            LOGGER.info(json.dumps(record))
        else:
            record["error"] = str(failure)
            LOGGER.error(json.dumps(record), exc_info=failure)
        return response

    def require_role(request: Request, *roles: Role) -> AuthenticatedUser:
        scheme, _, token = request.headers.get("authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthorized("Access token is required")
        user = request.app.state.tokens.authenticate(token.strip())
        if roles and user.role not in roles:
            raise Forbidden("Access denied")
        return user

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"message": "Working"}

    @app.get("/health")
    async def health(request: Request) -> dict[str, str]:
        job_cache: VersionedJobCache = request.app.state.job_cache
        cache_state = "disabled"
        if job_cache.enabled:
            version = await run_in_threadpool(job_cache.current_version)
            cache_state = "up" if version is not None else "down"
        return {"status": "ok", "service": "ats", "cache": cache_state}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    # Auth

    @app.post("/api/auth/signup", response_model=User, status_code=201)
    async def signup(payload: SignupRequest, request: Request) -> User:
        return await run_in_threadpool(
            request.app.state.auth_service.signup,
            email=str(payload.email),
            name=payload.name,
            password=payload.password,
        )

    @app.post("/api/auth/login", response_model=LoginResponse)
    async def login(payload: LoginRequest, request: Request) -> LoginResponse:
        return await run_in_threadpool(
            request.app.state.auth_service.login,
            email=str(payload.email),
            password=payload.password,
        )

    @app.post("/api/auth/refresh-token", response_model=TokenPair)
    async def refresh_token(payload: RefreshTokenRequest, request: Request) -> TokenPair:
        return await run_in_threadpool(
            request.app.state.auth_service.refresh,
            payload.refresh_token,
        )

    # Jobs

    @app.get("/api/jobs", response_model=JobListing)
    async def list_jobs(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
        search: str = Query(default=""),
        location: str = Query(default=""),
    ) -> JobListing:
        require_role(request, Role.ADMIN, Role.CANDIDATE)
        return await run_in_threadpool(
            request.app.state.job_service.list_jobs,
            page=page,
            limit=limit,
            search=search.strip() or None,
            location=location.strip() or None,
        )

    @app.get("/api/jobs/{job_id}", response_model=Job)
    async def get_job(job_id: int, request: Request) -> Job:
        require_role(request, Role.ADMIN, Role.CANDIDATE)
        return await run_in_threadpool(request.app.state.job_service.get_job, job_id)

    @app.post("/api/jobs", response_model=Job, status_code=201)
    async def create_job(payload: JobCreateRequest, request: Request) -> Job:
        admin = require_role(request, Role.ADMIN)
        job = await run_in_threadpool(
            request.app.state.job_service.create_job,
            title=payload.title,
            description=payload.description,
            location=payload.location,
            salary_range=payload.salary_range,
        )
        LOGGER.info("Admin id=%s created job id=%s", admin.id, job.id)
        return job

    # Candidates

    @app.post("/api/candidates/register", response_model=CandidateProfile, status_code=201)
    async def register_candidate(
        payload: CandidateRegisterRequest,
        request: Request,
    ) -> CandidateProfile:
        user = require_role(request, Role.CANDIDATE)
        return await run_in_threadpool(
            request.app.state.candidate_service.register_candidate,
            user.id,
            full_name=payload.full_name,
            phone=payload.phone,
            resume_url=str(payload.resume_url) if payload.resume_url else None,
        )

    # Applications

    @app.post("/api/applications", response_model=ApplicationDetail, status_code=201)
    async def create_application(
        payload: ApplicationCreateRequest,
        request: Request,
    ) -> ApplicationDetail:
        user = require_role(request, Role.CANDIDATE)
        return await run_in_threadpool(
            request.app.state.application_service.create_application,
            payload.job_id,
            user.id,
        )

    @app.patch("/api/applications/{application_id}", response_model=ApplicationDetail)
    async def update_application_status(
        application_id: int,
        payload: ApplicationStatusUpdateRequest,
        request: Request,
    ) -> ApplicationDetail:
        require_role(request, Role.ADMIN)
        return await run_in_threadpool(
            request.app.state.application_service.update_application_status,
            application_id,
            ApplicationStatus(payload.status),
        )

    @app.get("/api/applications", response_model=ApplicationListing)
    async def list_applications(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
        job_id: str = Query(default=""),
        status: str = Query(default=""),
    ) -> ApplicationListing:
        user = require_role(request, Role.ADMIN, Role.CANDIDATE)
        try:
            filters = ApplicationListQuery(job_id=job_id, status=status)
        except PydanticValidationError as exc:
            errors = exc.errors(include_url=False)
            raise RequestValidationError(
                [{**error, "loc": ("query", *error["loc"])} for error in errors]
            ) from exc
        return await run_in_threadpool(
            request.app.state.application_service.list_applications,
            user_id=user.id,
            role=user.role,
            page=page,
            limit=limit,
            job_id=filters.job_id,
            status=filters.status,
        )

    return app


app = create_app()
