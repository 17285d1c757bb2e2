"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Hold shared resources on app.state (config, controller factory)
- Register routes
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability.logger import configure_logging
from session.gateway import ControllerFactory

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    controller_factory: ControllerFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with fake providers (controller_factory)
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    configure_logging(json_logs=config.enable_json_logs, log_level=config.log_level)

    app = FastAPI(title="Voice Session API")

    app.state.config = config
    app.state.controller_factory = controller_factory

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
