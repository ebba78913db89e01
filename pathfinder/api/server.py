"""Entry point for serving the API via uvicorn."""

from __future__ import annotations

from typing import Any

import uvicorn

from pathfinder.models.config import FrameworkConfig
from pathfinder.orchestrator import Orchestrator

from .app import create_app


def build_uvicorn_config(config: FrameworkConfig, log_level: str = "info") -> dict[str, Any]:
    return {"host": config.server.host, "port": config.server.port, "log_level": log_level}


def serve(config: FrameworkConfig, log_level: str = "info") -> None:
    app = create_app(Orchestrator(config))
    uvicorn.run(app, **build_uvicorn_config(config, log_level))
