"""One scrape: Reader -> Resolver -> Normalizer -> Renderer.

Nothing here is cached between scrapes.  Each call re-reads the stack,
so a scrape never reports state older than the request itself.

The reader runs in a worker thread because it blocks on a subprocess.
asyncio.wait_for bounds it: on timeout the request fails immediately
and whatever the thread eventually returns is dropped on the floor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from wg_exporter.core.errors import CollectionError, ScrapeTimeoutError
from wg_exporter.core.metrics import SCRAPE_DURATION, SCRAPES
from wg_exporter.services.identity import IdentityResolver
from wg_exporter.services.normalizer import normalize
from wg_exporter.services.renderer import RenderOptions, render
from wg_exporter.services.wg_reader import StateReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScrapeResult:
    document: str
    interfaces: int
    peers: int
    failures: dict[str, str] = field(default_factory=dict)


class ScrapePipeline:
    def __init__(
        self,
        reader: StateReader,
        resolver: IdentityResolver,
        options: RenderOptions,
        *,
        timeout: float,
    ) -> None:
        self.reader = reader
        self.resolver = resolver
        self.options = options
        self.timeout = timeout

    async def run(self) -> ScrapeResult:
        """Run one full collection cycle.

        Raises CollectionError (ScrapeTimeoutError on timeout);
        everything else degrades inside the components.
        """
        start = time.monotonic()
        try:
            result = await self._run()
        except ScrapeTimeoutError:
            SCRAPES.labels(result="timeout").inc()
            raise
        except CollectionError:
            SCRAPES.labels(result="failure").inc()
            raise
        finally:
            SCRAPE_DURATION.observe(time.monotonic() - start)

        SCRAPES.labels(result="partial" if result.failures else "success").inc()
        return result

    async def _run(self) -> ScrapeResult:
        await self.resolver.refresh_if_due()

        try:
            read = await asyncio.wait_for(
                asyncio.to_thread(self.reader.read), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise ScrapeTimeoutError(
                f"collection did not finish within {self.timeout:g}s"
            ) from None

        partial = read.partial_error
        if partial is not None:
            logger.warning("Serving partial scrape: %s", partial)

        snapshots = normalize(read.interfaces, self.resolver)
        document = render(snapshots, self.options)
        peers = sum(len(s.peers) for s in snapshots)
        logger.debug("Scraped %d interfaces, %d peers", len(snapshots), peers)
        return ScrapeResult(
            document=document,
            interfaces=len(snapshots),
            peers=peers,
            failures=dict(read.failures),
        )
