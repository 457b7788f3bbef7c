from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from tenant_oauth.common.exceptions import attach_exception_handlers
from tenant_oauth.core.config import settings
from tenant_oauth.core.db import init_db, close_db
from tenant_oauth.core.logging import RequestContextMiddleware, setup_logging
from tenant_oauth.routes.oauth.application_routes import router as application_router
from tenant_oauth.routes.oauth.oauth_routes import router as oauth_router


# Lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # ---- Startup ----
    await init_db()
    logger.info("{} started (env={}, issuer={})", settings.APP_NAME, settings.ENV, settings.ISSUER)
    yield
    # ---- Shutdown ----
    await close_db()


def create_app() -> FastAPI:
    setup_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
        lifespan=lifespan
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    # Request correlation ids on every log line
    app.add_middleware(RequestContextMiddleware)

    app.include_router(oauth_router)
    app.include_router(application_router)

    attach_exception_handlers(app, login_url=settings.LOGIN_URL)

    return app


app = create_app()
