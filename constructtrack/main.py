import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .errors import setup_exception_handlers
from .logging import setup_logging, RequestIdMiddleware
from .models import models  # noqa: F401  (registers tables on Base.metadata)
from .auth.router import router as auth_router
from .routes.superadmin import router as superadmin_router
from .routes.tenant import router as tenant_router
from .routes.users import router as users_router
from .routes.sites import router as sites_router
from .routes.time_records import router as time_records_router
from .routes.service_orders import router as service_orders_router
from .routes.tools import router as tools_router
from .routes.leave import router as leave_router
from .routes.payroll import router as payroll_router
from .routes.notifications import router as notifications_router
from .routes.chat import router as chat_router
from .routes.dashboard import router as dashboard_router


logger = structlog.get_logger(__name__)


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

    setup_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(superadmin_router)
    app.include_router(tenant_router)
    app.include_router(users_router)
    app.include_router(sites_router)
    app.include_router(time_records_router)
    app.include_router(service_orders_router)
    app.include_router(tools_router)
    app.include_router(leave_router)
    app.include_router(payroll_router)
    app.include_router(notifications_router)
    app.include_router(chat_router)
    app.include_router(dashboard_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("database_tables_verified", tables=len(Base.metadata.tables))
        logger.info("startup_complete", app=settings.app_name, environment=settings.environment)

    return app


app = create_app()
