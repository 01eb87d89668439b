"""Identity Resolver: public key -> friendly peer name.

Public keys are 44 characters of base64; nobody recognises a peer by
them.  Operators keep the human names in one of two places, and both are
supported as mapping sources:

  1. Comments in the WireGuard config itself:

       [Peer]
       # friendly_name = alice-laptop
       PublicKey = 2yQ8...=
       AllowedIPs = 10.0.0.2/32

  2. A JSON file mapping keys to names:

       {"2yQ8...=": "alice-laptop"}

When both are configured the JSON file wins for keys present in both.

REFRESH AND SWAP
-----------------
The table is shared by every concurrent scrape, so it is never edited in
place.  A refresh builds a complete new dict off the event loop, wraps
it in a read-only MappingProxyType and rebinds one attribute.  A scrape
that already grabbed the old table keeps a consistent view; the next one
sees the new table.  No reader ever takes a lock.

A failed or slow refresh keeps the last good table (empty if nothing was
ever loaded).  Resolution cannot fail a scrape: the worst case is peers
labelled with their raw public key.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Protocol, runtime_checkable

from wg_exporter.core.errors import MappingSourceError
from wg_exporter.core.metrics import PEER_NAME_REFRESHES

logger = logging.getLogger(__name__)

_FRIENDLY_NAME_KEY = "friendly_name"


@runtime_checkable
class MappingSource(Protocol):
    """Returns a complete public key -> name mapping, or raises MappingSourceError."""

    def load(self) -> dict[str, str]: ...


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise MappingSourceError(f"failed to read {path}: {e}") from e


class JsonPeerNamesSource:
    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> dict[str, str]:
        try:
            data = json.loads(_read_text(self.path))
        except json.JSONDecodeError as e:
            raise MappingSourceError(
                f"failed to parse {self.path}: expected JSON object mapping "
                f"public keys to names ({e})"
            ) from e
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise MappingSourceError(
                f"failed to parse {self.path}: expected JSON object mapping "
                "public keys to names"
            )
        return dict(data)


def parse_peer_names(config_text: str) -> dict[str, str]:
    """Extract `# friendly_name = ...` comments from [Peer] sections.

    Peers without a friendly_name comment, or without a PublicKey, are
    skipped.  The comment may appear anywhere inside its section.
    """
    names: dict[str, str] = {}
    in_peer = False
    public_key: str | None = None
    friendly_name: str | None = None

    def flush() -> None:
        if in_peer and public_key and friendly_name:
            names[public_key] = friendly_name

    for raw in config_text.splitlines():
        line = raw.strip()
        if line.startswith("["):
            flush()
            in_peer = line.lower() == "[peer]"
            public_key = friendly_name = None
            continue
        if not in_peer or not line:
            continue

        if line.startswith("#"):
            key, sep, value = line.lstrip("#").partition("=")
            if sep and key.strip().lower() == _FRIENDLY_NAME_KEY:
                friendly_name = value.strip() or None
            continue

        # Keys are base64 and end in "=", so split on the first one only
        key, sep, value = line.partition("=")
        if sep and key.strip().lower() == "publickey":
            public_key = value.strip() or None

    flush()
    return names


class WgConfigPeerNamesSource:
    def __init__(self, paths: Iterable[str]) -> None:
        self.paths = tuple(paths)

    def load(self) -> dict[str, str]:
        names: dict[str, str] = {}
        for path in self.paths:
            names.update(parse_peer_names(_read_text(path)))
        return names


class CompositeSource:
    """Merges sources in order; later sources override earlier ones."""

    def __init__(self, sources: Iterable[MappingSource]) -> None:
        self.sources = tuple(sources)

    def load(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for source in self.sources:
            merged.update(source.load())
        return merged


def build_source(
    config_file_names: Iterable[str], peer_names_file: str | None
) -> MappingSource | None:
    sources: list[MappingSource] = []
    config_files = tuple(config_file_names)
    if config_files:
        sources.append(WgConfigPeerNamesSource(config_files))
    if peer_names_file:
        sources.append(JsonPeerNamesSource(peer_names_file))
    if not sources:
        return None
    return sources[0] if len(sources) == 1 else CompositeSource(sources)


class IdentityResolver:
    def __init__(
        self,
        source: MappingSource | None = None,
        *,
        refresh_interval: float = 60.0,
        timeout: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._refresh_interval = refresh_interval
        self._timeout = timeout
        self._clock = clock
        self._table: Mapping[str, str] = MappingProxyType({})
        self._last_attempt: float | None = None
        self._last_error: str | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def table(self) -> Mapping[str, str]:
        return self._table

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def status(self) -> str:
        """not_configured | pending | ok | stale (last refresh failed)."""
        if self._source is None:
            return "not_configured"
        if self._last_attempt is None:
            return "pending"
        return "stale" if self._last_error else "ok"

    def resolve(self, public_key: str) -> str | None:
        return self._table.get(public_key)

    def is_due(self) -> bool:
        if self._source is None:
            return False
        if self._last_attempt is None:
            return True
        return self._clock() - self._last_attempt >= self._refresh_interval

    async def refresh_if_due(self) -> None:
        """Reload the table when the refresh interval has elapsed.

        If another scrape is already refreshing, return immediately and
        let this scrape use the current table.
        """
        if not self.is_due() or self._refresh_lock.locked():
            return
        async with self._refresh_lock:
            if self.is_due():
                await self.refresh()

    async def refresh(self) -> bool:
        """Load the source once, bounded by the refresh timeout."""
        if self._source is None:
            return False
        self._last_attempt = self._clock()

        try:
            loaded = await asyncio.wait_for(
                asyncio.to_thread(self._source.load), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            self._fail("timeout", f"peer names load exceeded {self._timeout:g}s")
            return False
        except MappingSourceError as e:
            self._fail("failure", str(e))
            return False
        except Exception as e:
            logger.exception("Unexpected error loading peer names")
            self._fail("failure", f"{type(e).__name__}: {e}")
            return False

        # Single rebinding: readers see either the old table or this one.
        self._table = MappingProxyType(dict(loaded))
        self._last_error = None
        PEER_NAME_REFRESHES.labels(result="success").inc()
        logger.debug("Loaded %d peer names", len(loaded))
        return True

    def _fail(self, result: str, message: str) -> None:
        self._last_error = message
        PEER_NAME_REFRESHES.labels(result=result).inc()
        logger.warning(
            "Peer names refresh failed, keeping %d previous entries: %s",
            len(self._table),
            message,
        )
