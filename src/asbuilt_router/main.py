from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import secrets
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from asbuilt_router.api.routes import build_submissions_router
from asbuilt_router.destinations import DestinationAdapterRegistry
from asbuilt_router.errors import ApiError
from asbuilt_router.policy import CatalogUtilityConfigProvider
from asbuilt_router.policy.quality_validator import QualityValidator
from asbuilt_router.routing import (
    InMemoryRoutingRuleStore,
    RoutingRuleResolver,
    load_routing_rules,
)
from asbuilt_router.schemas import ErrorEnvelope
from asbuilt_router.services import (
    BackgroundTaskRunner,
    InMemoryBlobStore,
    InMemorySubmissionStore,
    LocalDirectoryBlobStore,
    RedisSubmissionStore,
    SubmissionOrchestrator,
    SubmissionService,
    build_blob_store,
    build_submission_store,
)
from asbuilt_router.settings import is_hardened_environment, load_settings
from asbuilt_router.telemetry import DeliveryMetrics, generate_trace_id

LOGGER = logging.getLogger(__name__)


def _backend_name(store: object) -> str:
    if isinstance(store, RedisSubmissionStore):
        return "redis"
    if isinstance(store, InMemorySubmissionStore):
        return "in_memory"
    if isinstance(store, InMemoryBlobStore):
        return "in_memory"
    if isinstance(store, LocalDirectoryBlobStore):
        return "local_directory"
    return "unknown"


def create_app() -> FastAPI:
    settings = load_settings()
    hardened_environment = is_hardened_environment(settings.environment)

    config_provider = CatalogUtilityConfigProvider.from_path(settings.utility_config_path)
    rule_store = InMemoryRoutingRuleStore(load_routing_rules(settings.routing_rules_path))
    resolver = RoutingRuleResolver(rule_store)
    delivery_metrics = DeliveryMetrics()
    blob_store = build_blob_store(storage_dir=settings.blob_storage_dir)
    submission_store = build_submission_store(redis_url=settings.redis_url)
    registry = DestinationAdapterRegistry.from_settings(
        settings,
        blob_store=blob_store,
        metrics=delivery_metrics,
    )
    orchestrator = SubmissionOrchestrator(
        store=submission_store,
        blob_store=blob_store,
        config_provider=config_provider,
        resolver=resolver,
        registry=registry,
        metrics=delivery_metrics,
        delivery_max_workers=settings.delivery_max_workers,
    )
    task_runner = BackgroundTaskRunner(max_workers=settings.processing_max_workers)
    submission_service = SubmissionService(
        store=submission_store,
        blob_store=blob_store,
        config_provider=config_provider,
        orchestrator=orchestrator,
        task_runner=task_runner,
        validator=QualityValidator(config_provider),
        upload_max_bytes=settings.upload_max_bytes,
    )

    if hardened_environment and settings.allow_simulated_delivery:
        LOGGER.warning(
            "Simulated destination delivery is enabled in a hardened environment",
            extra={"environment": settings.environment},
        )

    has_api_bearer_token = bool(settings.api_bearer_token)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        yield
        LOGGER.info("Draining background processing and delivery pools")
        task_runner.shutdown(wait=True)
        orchestrator.shutdown()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.submission_service = submission_service
    app.state.task_runner = task_runner
    app.state.orchestrator = orchestrator

    @app.middleware("http")
    async def trace_middleware(request: Request, call_next):
        request.state.trace_id = generate_trace_id()
        request_path = request.url.path
        requires_bearer_auth = has_api_bearer_token and (
            request_path.startswith("/api") or request_path.startswith("/ops")
        )
        if requires_bearer_auth:
            auth_header = request.headers.get("authorization", "")
            expected = f"Bearer {settings.api_bearer_token}"
            if not secrets.compare_digest(auth_header, expected):
                error = ErrorEnvelope(
                    error={
                        "code": "UNAUTHORIZED",
                        "message": "Missing or invalid bearer token",
                        "trace_id": request.state.trace_id,
                    }
                )
                return JSONResponse(
                    status_code=401,
                    content=error.model_dump(),
                    headers={"x-trace-id": request.state.trace_id},
                )

        response = await call_next(request)
        response.headers["x-trace-id"] = request.state.trace_id
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        trace_id = getattr(request.state, "trace_id", generate_trace_id())
        payload = ErrorEnvelope(
            error={
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "trace_id": trace_id,
            }
        )
        return JSONResponse(
            status_code=422,
            content=payload.model_dump(),
            headers={"x-trace-id": trace_id},
        )

    @app.exception_handler(ApiError)
    async def api_exception_handler(request: Request, exc: ApiError):
        trace_id = getattr(request.state, "trace_id", generate_trace_id())
        payload = ErrorEnvelope(
            error={"code": exc.code, "message": exc.message, "trace_id": trace_id}
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=payload.model_dump(),
            headers={"x-trace-id": trace_id},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        trace_id = getattr(request.state, "trace_id", generate_trace_id())
        LOGGER.exception("Unhandled API exception", exc_info=exc)
        message = "Unexpected server error"
        if not hardened_environment:
            message = str(exc) or message
        payload = ErrorEnvelope(
            error={
                "code": "INTERNAL_ERROR",
                "message": message,
                "trace_id": trace_id,
            }
        )
        return JSONResponse(
            status_code=500,
            content=payload.model_dump(),
            headers={"x-trace-id": trace_id},
        )

    app.include_router(
        build_submissions_router(
            service=submission_service,
            upload_max_bytes=settings.upload_max_bytes,
        )
    )

    @app.get("/healthz", tags=["health"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/ops/metrics", tags=["ops"])
    async def ops_metrics() -> dict[str, object]:
        return {
            "delivery_metrics": delivery_metrics.snapshot(),
            "destination_adapters": registry.cached_destinations(),
            "submission_store": {"backend": _backend_name(submission_store)},
            "blob_store": {"backend": _backend_name(blob_store)},
            "background_tasks": {"pending": task_runner.pending_count()},
            "routing_rules": len(rule_store.all()),
        }

    return app


app = create_app()
