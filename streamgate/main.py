import asyncio
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from streamgate.api import admin, health, retrieve
from streamgate.config.settings import Config, load_config
from streamgate.core.errors import register_error_handlers
from streamgate.core.middleware import REQUEST_ID_HEADER, RequestIdMiddleware
from streamgate.core.logging import logger, setup_logging
from streamgate.core.state import RuntimeState
from streamgate.i18n import I18n
from streamgate.infra.concurrency import ExtractionLimiter
from streamgate.infra.redis import close_redis, init_redis
from streamgate.services.extraction import ExtractionCommandBuilder, SubprocessExecutor
from streamgate.services.retrieval import RetrievalService


async def probe_extractor_version(config: Config) -> str:
    """Ask the extraction binary for its version; 'unavailable' when it can't run"""
    cmd = ExtractionCommandBuilder.build_version_command(config.extraction)
    try:
        result = await SubprocessExecutor.run(cmd, timeout=10.0)
    except (OSError, asyncio.TimeoutError) as e:
        logger.warning(f"Extractor version probe failed: {e}")
        return "unavailable"
    if result.returncode != 0:
        return "unavailable"
    return result.stdout.decode(errors="replace").strip() or "unknown"


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Build the application around one explicit configuration object"""
    config = config or load_config()
    setup_logging(config.logging)

    app = FastAPI(
        title=config.api.title,
        description=config.api.description,
        version=config.api.version,
        docs_url="/docs" if config.api.debug else None,
        redoc_url=None
    )

    limiter = ExtractionLimiter(
        max_concurrent=config.extraction.max_concurrent,
        acquire_timeout=config.extraction.acquire_timeout
    )
    app.state.config = config
    app.state.runtime = RuntimeState()
    app.state.i18n = I18n(default_locale=config.i18n.default_locale)
    app.state.limiter = limiter
    app.state.retrieval = RetrievalService(config, limiter)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", REQUEST_ID_HEADER],
    )

    app.add_middleware(RequestIdMiddleware)

    register_error_handlers(app)

    # Routes
    app.include_router(health.router, tags=["Health"])
    app.include_router(retrieve.router, tags=["Retrieve"])
    app.include_router(admin.router, prefix="/admin", tags=["Admin"])

    @app.on_event("startup")
    async def startup_event():
        app.state.runtime.redis = await init_redis(config.redis)
        app.state.runtime.extractor_version = await probe_extractor_version(config)
        logger.info(
            f"{config.api.title} ready: extractor={config.extraction.binary} "
            f"({app.state.runtime.extractor_version}), max_concurrent={config.extraction.max_concurrent}"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        await close_redis(app.state.runtime.redis)
        app.state.runtime.redis = None

    return app
