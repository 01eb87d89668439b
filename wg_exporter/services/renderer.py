"""Exposition Renderer: snapshot -> Prometheus text format.

WHY A FRESH REGISTRY PER SCRAPE
---------------------------------
The usual prometheus_client pattern (see wg_exporter.core.metrics) keeps
Counter/Gauge objects alive for the whole process and mutates them.
That is wrong for tunnel state:

  - a peer removed from wg0 would keep its last sample forever, because
    nothing ever deletes the label combination;
  - two concurrent scrapes would write into the same gauges.

Instead each render builds a throwaway CollectorRegistry holding one
custom collector.  The collector yields *MetricFamily objects built from
the snapshot, and generate_latest() does the formatting: HELP/TYPE lines
once per family, label escaping, float formatting.

SCHEMA
-------
Every per-peer family carries the same label keys in the same order:

  interface, public_key, friendly_name [, remote_ip, remote_port]

friendly_name falls back to the public key.  remote_ip/remote_port are
only present when EXPORT_REMOTE_IP_AND_PORT is on, and are "" for peers
without an endpoint, so the key set never varies between samples.

A peer that never completed a handshake reports
wireguard_latest_handshake_seconds 0.  A `time() - x` query against it
yields "55 years ago", which alerts on a stale tunnel exactly like a
very old handshake would.  Persistent keepalive "off" reports 0.
"""

from __future__ import annotations

import math
import time
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from wg_exporter.models.snapshot import InterfaceSnapshot, PeerRecord

HANDSHAKE_NEVER = 0
KEEPALIVE_OFF = 0


@dataclass(frozen=True, slots=True)
class RenderOptions:
    separate_allowed_ips: bool = False
    export_remote_ip_and_port: bool = False
    export_latest_handshake_delay: bool = False


class WireGuardCollector(Collector):
    def __init__(
        self,
        snapshots: Sequence[InterfaceSnapshot],
        options: RenderOptions,
        now: float | None = None,
    ) -> None:
        self._snapshots = snapshots
        self._options = options
        self._now = now

    @property
    def peer_labels(self) -> list[str]:
        labels = ["interface", "public_key", "friendly_name"]
        if self._options.export_remote_ip_and_port:
            labels += ["remote_ip", "remote_port"]
        return labels

    def _peer_values(self, interface: str, peer: PeerRecord) -> list[str]:
        values = [interface, peer.public_key, peer.label_name]
        if self._options.export_remote_ip_and_port:
            values += [peer.remote_ip or "", peer.remote_port or ""]
        return values

    def _peers(self) -> Iterator[tuple[list[str], PeerRecord]]:
        for snapshot in self._snapshots:
            for peer in snapshot.peers:
                yield self._peer_values(snapshot.name, peer), peer

    def collect(self) -> Iterable[Metric]:
        interface_info = GaugeMetricFamily(
            "wireguard_interface_info",
            "WireGuard interface, always 1",
            labels=["interface", "public_key", "listen_port"],
        )
        interface_peers = GaugeMetricFamily(
            "wireguard_interface_peers",
            "Number of peers configured on the interface",
            labels=["interface"],
        )
        for snapshot in self._snapshots:
            listen_port = "" if snapshot.listen_port is None else str(snapshot.listen_port)
            interface_info.add_metric(
                [snapshot.name, snapshot.public_key or "", listen_port], 1
            )
            interface_peers.add_metric([snapshot.name], len(snapshot.peers))
        yield interface_info
        yield interface_peers

        peer_info = GaugeMetricFamily(
            "wireguard_peer_info",
            "WireGuard peer, always 1",
            labels=[*self.peer_labels, "allowed_ips"],
        )
        for values, peer in self._peers():
            peer_info.add_metric([*values, ",".join(peer.allowed_ips)], 1)
        yield peer_info

        if self._options.separate_allowed_ips:
            yield self._allowed_ip_family()

        received = CounterMetricFamily(
            "wireguard_received_bytes",
            "Bytes received from the peer",
            labels=self.peer_labels,
        )
        sent = CounterMetricFamily(
            "wireguard_sent_bytes",
            "Bytes sent to the peer",
            labels=self.peer_labels,
        )
        handshake = GaugeMetricFamily(
            "wireguard_latest_handshake_seconds",
            "Unix time of the latest handshake, 0 if none has happened",
            labels=self.peer_labels,
        )
        keepalive = GaugeMetricFamily(
            "wireguard_persistent_keepalive_seconds",
            "Persistent keepalive interval, 0 if disabled",
            labels=self.peer_labels,
        )
        for values, peer in self._peers():
            received.add_metric(values, peer.bytes_received)
            sent.add_metric(values, peer.bytes_sent)
            handshake.add_metric(
                values,
                HANDSHAKE_NEVER if peer.latest_handshake is None else peer.latest_handshake,
            )
            keepalive.add_metric(
                values,
                KEEPALIVE_OFF
                if peer.persistent_keepalive is None
                else peer.persistent_keepalive,
            )
        yield received
        yield sent
        yield handshake

        if self._options.export_latest_handshake_delay:
            yield self._handshake_delay_family()

        yield keepalive

    def _allowed_ip_family(self) -> GaugeMetricFamily:
        family = GaugeMetricFamily(
            "wireguard_peer_allowed_ip_info",
            "One sample per allowed IP range of the peer, always 1",
            labels=[*self.peer_labels, "allowed_ip", "allowed_subnet"],
        )
        for values, peer in self._peers():
            for network in peer.allowed_ips:
                address, _, prefix = network.partition("/")
                family.add_metric([*values, address, prefix], 1)
        return family

    def _handshake_delay_family(self) -> GaugeMetricFamily:
        now = time.time() if self._now is None else self._now
        family = GaugeMetricFamily(
            "wireguard_latest_handshake_delay_seconds",
            "Seconds since the latest handshake, NaN if none has happened",
            labels=self.peer_labels,
        )
        for values, peer in self._peers():
            if peer.latest_handshake is None:
                family.add_metric(values, math.nan)
            else:
                # Clamp clock skew between kernel and exporter
                family.add_metric(values, max(0.0, now - peer.latest_handshake))
        return family


def render(
    snapshots: Sequence[InterfaceSnapshot],
    options: RenderOptions | None = None,
    now: float | None = None,
) -> str:
    """Render snapshots as a text exposition document.

    Deterministic for a given (snapshots, options, now).  `now` only
    matters when the handshake delay family is enabled.
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(WireGuardCollector(snapshots, options or RenderOptions(), now))
    return generate_latest(registry).decode("utf-8")
