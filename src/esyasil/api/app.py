from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import Settings, get_settings
from ..logging.formatter import setup_logging
from .dependencies import ServiceContainer, build_container
from .router import router


def create_app(
    container: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the HTTP app. Tests pass a container wired with fakes; production
    builds one from settings (`uvicorn --factory esyasil.api.app:create_app`).
    """
    if container is None:
        settings = settings or get_settings()
        setup_logging(settings.log_level, json_output=settings.json_logs)
        container = build_container(settings)

    app = FastAPI(title="EşyaSil AI API", version="0.1.0")
    app.state.container = container
    # The browser client calls these endpoints cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.include_router(router)
    return app
