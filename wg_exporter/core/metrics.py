"""The exporter's own metrics.

These live on the prometheus_client default registry and describe the
exporter, not the tunnels: how long scrapes take, how often they fail,
how many records were dropped as malformed.  They are appended to the
/metrics document after the WireGuard families (see
wg_exporter.api.metrics_endpoint).

The WireGuard families themselves are NOT defined here.  They are built
fresh for every scrape by wg_exporter.services.renderer, because their
label values (peers, interfaces) come and go between scrapes and must
never linger in a long-lived registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

SCRAPE_DURATION = Histogram(
    "wireguard_exporter_scrape_duration_seconds",
    "Time spent collecting and rendering one scrape",
    # `wg show` normally answers in a few milliseconds; anything past a
    # second means sudo or the kernel is slow.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

SCRAPES = Counter(
    "wireguard_exporter_scrapes_total",
    "Scrapes by result",
    ["result"],  # success|partial|failure|timeout
)

INTERFACE_ERRORS = Counter(
    "wireguard_exporter_interface_errors_total",
    "Interfaces omitted from a scrape because they could not be read",
    ["interface"],
)

MALFORMED_RECORDS = Counter(
    "wireguard_exporter_malformed_records_total",
    "Records sanitized or dropped because a field was invalid",
    ["kind"],  # line|peer|allowed_ip|endpoint
)

PEER_NAME_REFRESHES = Counter(
    "wireguard_exporter_peer_names_refreshes_total",
    "Friendly-name mapping reloads by result",
    ["result"],  # success|failure|timeout
)
