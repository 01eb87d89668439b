"""GET /metrics: one scrape per request.

Example output:
  # HELP wireguard_received_bytes_total Bytes received from the peer
  # TYPE wireguard_received_bytes_total counter
  wireguard_received_bytes_total{interface="wg0",public_key="2yQ8...=",friendly_name="alice"} 1024.0

Status codes:
  200  document rendered (possibly without interfaces that failed)
  500  the network stack could not be queried at all
  503  the stack query is still busy with another scrape
  504  collection exceeded the scrape timeout

SECURITY NOTE: the document lists peer public keys, endpoints and
allowed IPs.  Bind to a management address or enable TLS when the
exporter is reachable from untrusted networks.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_PLAIN_0_0_4, REGISTRY, generate_latest

from wg_exporter.api.dependencies import get_pipeline, get_settings
from wg_exporter.core.config import Settings
from wg_exporter.core.errors import (
    CollectionError,
    ScrapeTimeoutError,
    TransientIOError,
)
from wg_exporter.services.scrape import ScrapePipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["observability"])


def _error_status(exc: CollectionError) -> int:
    if isinstance(exc, ScrapeTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, TransientIOError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.get("/metrics", include_in_schema=False)
async def metrics(
    pipeline: Annotated[ScrapePipeline, Depends(get_pipeline)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    """Collect tunnel state now and return it in text exposition format."""
    try:
        result = await pipeline.run()
    except CollectionError as e:
        code = _error_status(e)
        logger.error("Scrape failed with %d: %s", code, e)
        return PlainTextResponse(f"scrape failed: {e}\n", status_code=code)

    content = result.document
    if settings.exporter_metrics:
        content += generate_latest(REGISTRY).decode("utf-8")
    return Response(content=content, media_type=CONTENT_TYPE_PLAIN_0_0_4)
