"""FastAPI application factory for the proxyrun control API."""

from __future__ import annotations

from fastapi import FastAPI

from proxyrun import __version__
from proxyrun.config import ProxyRunConfig
from proxyrun.session.controller import SessionController
from proxyrun.session.modes import create_mode
from proxyrun.storage.db import get_db
from proxyrun.storage.store import ProfileStore


async def create_app(
    config: ProxyRunConfig | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or ProxyRunConfig.load()

    app = FastAPI(
        title="proxyrun",
        version=__version__,
        docs_url="/api/docs",
    )

    # Profiles are served from the async connection; the controller's
    # worker threads get their own blocking store.
    app.state.config = config
    app.state.db = await get_db(config.db_path)
    app.state.store = ProfileStore(config.db_path)
    app.state.controller = SessionController(
        create_mode(config.service_mode),
        app.state.store,
        config=config,
    )

    from proxyrun.web.api.profiles import router as profiles_router
    from proxyrun.web.api.session import router as session_router

    app.include_router(profiles_router, prefix="/api")
    app.include_router(session_router, prefix="/api")

    @app.on_event("shutdown")
    async def shutdown() -> None:
        app.state.controller.close()
        app.state.store.close()
        await app.state.db.close()

    return app
