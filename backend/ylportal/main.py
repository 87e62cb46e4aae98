import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.engine import Engine

from ylportal.core.config import Settings, get_settings
from ylportal.core.errors import PortalError
from ylportal.core.logging_config import configure_logging
from ylportal.db.session import make_engine, make_session_factory
from ylportal.services.rate_limit import SlidingWindowLimiter
from ylportal.api.routes.auth import router as auth_router
from ylportal.api.routes.users import router as users_router
from ylportal.api.routes.areas import router as areas_router
from ylportal.api.routes.bank_accounts import router as bank_accounts_router
from ylportal.api.routes.movements import router as movements_router
from ylportal.api.routes.drafts import router as drafts_router
from ylportal.api.routes.imports import router as imports_router
from ylportal.api.routes.dashboard import router as dashboard_router
from ylportal.api.routes.reports import router as reports_router
from ylportal.api.routes.audit import router as audit_router

logger = logging.getLogger(__name__)

RATE_LIMIT_EXEMPT = ("/health", "/api/health")


def _client_id(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def create_app(
    settings: Settings | None = None,
    engine: Engine | None = None,
    limiter: SlidingWindowLimiter | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = engine or make_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.limiter is None and settings.rate_limit_enabled:
            app.state.limiter = SlidingWindowLimiter.from_url(
                settings.redis_url, settings.rate_limit_max_requests, settings.rate_limit_window_seconds
            )
        yield
        if app.state.limiter is not None:
            app.state.limiter.close()
        engine.dispose()

    app = FastAPI(title="YL Portal", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.limiter = limiter

    origins = [o.strip() for o in (settings.cors_origins or "").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        lim = request.app.state.limiter
        if lim is None or request.url.path in RATE_LIMIT_EXEMPT:
            return await call_next(request)

        # redis-py is blocking; keep its round trip off the event loop
        decision = await run_in_threadpool(lim.hit, _client_id(request))
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
        }
        if not decision.allowed:
            headers["Retry-After"] = str(decision.reset_seconds)
            return JSONResponse(
                status_code=429,
                content={"detail": "rate_limited", "message": "Too many requests, please slow down"},
                headers=headers,
            )
        response = await call_next(request)
        response.headers.update(headers)
        return response

    @app.exception_handler(PortalError)
    async def portal_error(request: Request, exc: PortalError):
        if exc.status_code >= 500:
            logger.error("unhandled portal error on %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.get("/health")
    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(areas_router)
    app.include_router(bank_accounts_router)
    app.include_router(movements_router)
    app.include_router(drafts_router)
    app.include_router(imports_router)
    app.include_router(dashboard_router)
    app.include_router(reports_router)
    app.include_router(audit_router)

    return app
