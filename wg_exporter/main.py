from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from wg_exporter import __version__
from wg_exporter.api.health import router as health_router
from wg_exporter.api.metrics_endpoint import router as metrics_router
from wg_exporter.core.config import SETTINGS, Settings
from wg_exporter.core.logging import setup_logging
from wg_exporter.middleware.request_context import RequestContextMiddleware
from wg_exporter.services.identity import IdentityResolver, MappingSource, build_source
from wg_exporter.services.renderer import RenderOptions
from wg_exporter.services.scrape import ScrapePipeline
from wg_exporter.services.wg_reader import StackQuery, StateReader, WgShowQuery

logger = logging.getLogger(__name__)


def build_pipeline(
    settings: Settings,
    *,
    query: StackQuery | None = None,
    source: MappingSource | None = None,
) -> ScrapePipeline:
    """Wire the collection pipeline from settings.

    `query` and `source` replace the `wg` subprocess and the configured
    name files; tests pass fakes here.
    """
    if query is None:
        query = WgShowQuery(
            wg_binary=settings.wg_binary,
            prepend_sudo=settings.prepend_sudo,
            timeout=settings.scrape_timeout_seconds,
        )
    if source is None:
        source = build_source(settings.config_file_names, settings.peer_names_file)

    reader = StateReader(
        query,
        settings.interfaces,
        # Half the budget, so a scrape queued behind a hung read gets 503
        # before its own 504 deadline
        lock_timeout=settings.scrape_timeout_seconds / 2,
    )
    resolver = IdentityResolver(
        source,
        refresh_interval=settings.peer_names_refresh_seconds,
        timeout=settings.peer_names_timeout_seconds,
    )
    options = RenderOptions(
        separate_allowed_ips=settings.separate_allowed_ips,
        export_remote_ip_and_port=settings.export_remote_ip_and_port,
        export_latest_handshake_delay=settings.export_latest_handshake_delay,
    )
    return ScrapePipeline(
        reader, resolver, options, timeout=settings.scrape_timeout_seconds
    )


def create_app(
    settings: Settings = SETTINGS,
    *,
    query: StackQuery | None = None,
    source: MappingSource | None = None,
) -> FastAPI:
    pipeline = build_pipeline(settings, query=query, source=source)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        # Load peer names once up front so the first scrape doesn't pay
        # for it.  A failure here is logged and retried on later scrapes.
        await pipeline.resolver.refresh()
        yield

    app = FastAPI(
        title="wg-exporter",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_middleware(RequestContextMiddleware)

    app.include_router(metrics_router)
    app.include_router(health_router)
    return app


def run(settings: Settings = SETTINGS) -> None:
    """Console entry point: serve /metrics with uvicorn."""
    setup_logging(settings.log_level, json_format=settings.log_json)
    logger.info(
        "wg-exporter v%s starting  interfaces=%s sudo=%s names=%s tls=%s",
        __version__,
        ",".join(settings.interfaces) or "all",
        "on" if settings.prepend_sudo else "off",
        "on" if settings.peer_names_configured else "off",
        "on" if settings.tls_enabled else "off",
    )
    scheme = "https" if settings.tls_enabled else "http"
    logger.info("Serving on %s://%s:%d/metrics", scheme, settings.address, settings.port)

    uvicorn.run(
        create_app(settings),
        host=settings.address,
        port=settings.port,
        ssl_certfile=settings.tls_cert_file,
        ssl_keyfile=settings.tls_key_file,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    run()
