# flixbook/main.py: only app wiring, no endpoints here.
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flixbook.api.routes import gallery
from flixbook.core.config import get_settings
from flixbook.core.logging_utils import setup_logging


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.json_logs, logs_dir=settings.logs_dir)

    app = FastAPI(title="Flixbook API", version="0.1")

    # CORS (allow the front-end dev server)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # API routers
    app.include_router(gallery.api_router, prefix="/api")
    return app


app = create_app()
