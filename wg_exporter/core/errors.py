"""Error taxonomy for the collection pipeline.

Only total failures ever reach the HTTP layer.  Everything else is
absorbed by the component that notices it:

  TransientIOError        the stack query or a mapping source is briefly
                          unavailable; the interface is skipped, or the
                          resolver keeps its last good table.
  InterfaceNotFoundError  one interface vanished between listing and
                          reading; it is omitted from the scrape.
  PartialCollectionError  some interfaces failed, the rest are served.
  TotalCollectionFailure  nothing could be read (permission denied, no
                          `wg` binary, every interface failed); the scrape
                          answers with a 5xx.
  MalformedDataWarning    a single record had invalid fields; it is
                          sanitized or dropped, logged and counted.
"""

from __future__ import annotations

import logging

from wg_exporter.core.metrics import MALFORMED_RECORDS

logger = logging.getLogger(__name__)


class CollectionError(Exception):
    """Base class for failures while reading tunnel state."""


class TransientIOError(CollectionError):
    """The network stack (or a mapping source) is temporarily unavailable."""


class InterfaceNotFoundError(CollectionError):
    def __init__(self, interface: str) -> None:
        super().__init__(f"interface {interface!r} not found")
        self.interface = interface


class PartialCollectionError(CollectionError):
    """Some interfaces failed while others were read.

    Never raised out of the reader: it is attached to the read result so
    the scrape can log it and still answer 200 with the survivors.
    """

    def __init__(self, failures: dict[str, str]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"{len(failures)} interface(s) unreadable: {names}")
        self.failures = failures


class TotalCollectionFailure(CollectionError):
    """No interface could be read; the scrape cannot produce a document."""


class ScrapeTimeoutError(TotalCollectionFailure):
    """Collection did not finish within the scrape timeout."""


class MappingSourceError(Exception):
    """A friendly-name mapping source could not be loaded."""


class MalformedDataWarning(UserWarning):
    """A record was sanitized or dropped because a field was invalid."""


def report_malformed(kind: str, detail: str) -> MalformedDataWarning:
    """Log and count a sanitized or dropped record.

    `kind` is the label on wireguard_exporter_malformed_records_total
    (line, peer, allowed_ip, endpoint).
    """
    warning = MalformedDataWarning(detail)
    logger.warning("Malformed %s dropped: %s", kind, warning)
    MALFORMED_RECORDS.labels(kind=kind).inc()
    return warning
