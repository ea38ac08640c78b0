from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from ..core import feature_flags
from ..core.config import EngineConfig
from ..core.templates import TemplateRegistry
from ..features.session import SessionManager, create_session_routers

__all__ = ["app", "create_app", "main"]

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATES = Path(__file__).resolve().parents[1] / "data" / "templates.json"
_SHUTDOWN_DRAIN_SECONDS = 5.0


def _load_templates() -> TemplateRegistry:
    raw = os.environ.get("REFCHECK_TEMPLATES")
    path = Path(raw) if raw else _DEFAULT_TEMPLATES
    registry = TemplateRegistry.from_file(path)
    logger.info("templates loaded", extra={"path": str(path), "templates": registry.ids()})
    return registry


def create_app(manager: SessionManager | None = None) -> FastAPI:
    if manager is None:
        manager = SessionManager(_load_templates(), config=EngineConfig.from_env())

    @asynccontextmanager
    async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if not manager.polish.drain(timeout=_SHUTDOWN_DRAIN_SECONDS):
            logger.warning("shutting down with polish jobs still running")

    flags = feature_flags.active_flags()
    unknown = sorted(flags - feature_flags.KNOWN_FLAGS)
    if unknown:
        logger.warning("ignoring unknown feature flags: %s", ", ".join(unknown))
    logger.info("feature flags active", extra={"flags": sorted(flags)})

    application = FastAPI(title="Reference Session Engine", lifespan=_lifespan)
    application.state.manager = manager
    router_v1, router_legacy = create_session_routers(manager)
    application.include_router(router_v1)
    application.include_router(router_legacy)

    @application.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    def _custom_openapi() -> dict[str, object]:  # pragma: no cover - exercised via docs
        if application.openapi_schema:
            return application.openapi_schema
        schema = get_openapi(
            title=application.title,
            version="1.0.0",
            description=application.description,
            routes=application.routes,
        )
        application.openapi_schema = schema
        return schema

    application.openapi = _custom_openapi  # type: ignore[method-assign]
    return application


app = create_app()


def main() -> None:  # pragma: no cover - runner
    import uvicorn

    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
    host = os.environ.get("BIND", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(app, host=host, port=port, factory=False)


if __name__ == "__main__":  # pragma: no cover
    main()
