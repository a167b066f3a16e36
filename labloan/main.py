import os
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .errors import LabLoanError
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.laboratories import router as laboratories_router
from .routes.equipment import router as equipment_router
from .routes.loan_requests import router as loan_requests_router
from .routes.users import router as users_router
from .routes.password_resets import router as password_resets_router
from .routes.dashboard import router as dashboard_router
from .routes.audit_logs import router as audit_logs_router


log = structlog.get_logger(__name__)


async def labloan_error_handler(request: Request, exc: LabLoanError) -> JSONResponse:
    log.info(
        "request_refused",
        error_code=exc.code,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Domain errors map to HTTP statuses in one place
    app.add_exception_handler(LabLoanError, labloan_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(laboratories_router)
    app.include_router(equipment_router)
    app.include_router(loan_requests_router)
    app.include_router(users_router)
    app.include_router(password_resets_router)
    app.include_router(dashboard_router)
    app.include_router(audit_logs_router)

    @app.get("/health-check")
    def health_check():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("database_tables_ready")

    return app


app = create_app()
