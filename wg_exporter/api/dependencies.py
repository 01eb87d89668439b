from __future__ import annotations

from fastapi import Request

from wg_exporter.core.config import Settings
from wg_exporter.services.scrape import ScrapePipeline


def get_pipeline(request: Request) -> ScrapePipeline:
    """The pipeline built by create_app(), shared by every request.

    Sharing it is safe: the pipeline holds no per-scrape state, only the
    reader (which serializes its own stack queries) and the resolver
    (whose table is swapped, never mutated).
    """
    return request.app.state.pipeline


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
