from __future__ import annotations  # FastAPI server exposing the business audit interview

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import install_error_handlers, router
from config.settings import settings
from storage.migrate import migrate


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # Ensure tables exist before serving
    migrate(settings.DB_PATH)
    logger.info("Audit database ready path=%s webhook=%s", settings.DB_PATH, bool(settings.AUDIT_WEBHOOK_URL))
    yield


def create_app() -> FastAPI:  # Assemble routes, middleware and error mapping
    app = FastAPI(title="Business Audit API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(router)
    install_error_handlers(app)
    return app


app = create_app()
