"""FastAPI application factory for the status API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docstack_ops import __version__
from docstack_ops.api.routes import alerts, backups, monitor, services
from docstack_ops.config.models import DocstackConfig
from docstack_ops.context import Docstack, build_context


def create_app(config: DocstackConfig | None = None, context: Docstack | None = None) -> FastAPI:
    if context is None:
        context = build_context(config or DocstackConfig())

    app = FastAPI(
        title="docstack",
        version=__version__,
        description=f"Status API for the {context.config.stack.name} stack",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.config = context.config
    app.state.docstack = context

    @app.get("/health", tags=["meta"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(services.router, prefix="/api")
    app.include_router(monitor.router, prefix="/api")
    app.include_router(backups.router, prefix="/api")
    app.include_router(alerts.router, prefix="/api")
    return app
