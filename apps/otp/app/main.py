import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from otpcore import OTPService, build_redis_store, resolve_backend

from .config import settings
from .middleware_request_id import RequestIDMiddleware
from .routers import otp as otp_router

logger = logging.getLogger("otp.app")

REQ = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"])
REQ_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _build_service() -> tuple[OTPService, object]:
    store = build_redis_store(settings.REDIS_URL)
    service = OTPService(
        store,
        resolve_backend(),
        otp_expiry_minutes=settings.OTP_EXPIRY_MINUTES,
        rate_limit_seconds=settings.OTP_RATE_LIMIT_SECONDS,
        delivery_timeout_secs=settings.OTP_DELIVERY_TIMEOUT_SECS,
        expose_code=settings.OTP_EXPOSE_CODE,
    )
    return service, store


def create_app(service: Optional[OTPService] = None) -> FastAPI:
    """Build the OTP API.

    With no ``service`` a Redis-backed one is built from settings and its
    connection is closed on shutdown; an injected service is left alone.
    """
    _configure_logging()
    owned_store = None
    if service is None:
        service, owned_store = _build_service()
    if service.expose_code:
        logger.warning("OTP_EXPOSE_CODE is enabled: generated codes are returned in API responses")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owned_store is not None:
            try:
                await owned_store.ping()
                logger.info("Connected to Redis")
            except Exception as exc:
                logger.error("Redis is not reachable at startup: %s", exc)
        yield
        if owned_store is not None:
            logger.info("Closing Redis connection")
            await owned_store.close()

    app = FastAPI(title="OTP API", version="0.1.0", lifespan=lifespan)
    app.state.otp_service = service

    allowed_origins = settings.ALLOWED_ORIGINS or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.middleware("http")
    async def _metrics_mw(request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        REQ.labels(request.method, route, str(response.status_code)).inc()
        REQ_DURATION.labels(request.method, route).observe(duration)
        return response

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "otp", "env": settings.ENV}

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(otp_router.router)
    return app


app = create_app()
