"""Health and readiness endpoints.

  /health (liveness): the process answers.  Also reports whether the
    peer names mapping loaded, since a broken names file silently turns
    every friendly_name label into a public key.

  /ready (readiness): the exporter can serve scrapes.  It does not run
    `wg`; a scrape does that, and a failed scrape already returns 5xx.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from wg_exporter.api.dependencies import get_pipeline
from wg_exporter.services.scrape import ScrapePipeline

router = APIRouter(tags=["health"])


class PeerNamesCheck(BaseModel):
    status: str  # not_configured|pending|ok|stale
    entries: int
    error: str | None = None


class HealthOut(BaseModel):
    status: str  # ok|degraded
    interfaces: list[str]
    scrape_timeout_seconds: float
    peer_names: PeerNamesCheck


@router.get("/health", response_model=HealthOut)
async def health(
    pipeline: Annotated[ScrapePipeline, Depends(get_pipeline)],
) -> HealthOut:
    """Liveness probe plus mapping status.

    Returns 200 even when degraded; the status field says why.
    """
    resolver = pipeline.resolver
    names = PeerNamesCheck(
        status=resolver.status,
        entries=len(resolver.table),
        error=resolver.last_error,
    )
    return HealthOut(
        status="degraded" if names.status == "stale" else "ok",
        interfaces=list(pipeline.reader.interfaces),
        scrape_timeout_seconds=pipeline.timeout,
        peer_names=names,
    )


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
