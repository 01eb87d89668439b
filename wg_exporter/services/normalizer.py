"""Snapshot Normalizer: raw dump records -> immutable, sorted snapshot.

Every field of the output is either validated or explicitly defaulted,
so the renderer never has to guess.  Ordering is total (interfaces by
name, peers by public key): the same tunnel state always renders to the
same bytes, whatever order `wg` happened to list it in.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from typing import Protocol

from wg_exporter.core.errors import report_malformed
from wg_exporter.models.snapshot import (
    InterfaceSnapshot,
    PeerRecord,
    RawInterface,
    RawPeer,
)

U64_MAX = 2**64 - 1


class NameResolver(Protocol):
    def resolve(self, public_key: str) -> str | None: ...


def _counter(value: str) -> int:
    # ASCII digits only: no sign, underscores or padding
    if not (value.isascii() and value.isdecimal()):
        raise ValueError(f"{value!r} is not a decimal counter")
    count = int(value)
    if not 0 <= count <= U64_MAX:
        raise ValueError(f"{value} does not fit an unsigned 64-bit counter")
    return count


def _non_negative(value: int | None, what: str, where: str) -> int | None:
    if value is not None and value < 0:
        report_malformed("peer", f"{where}: negative {what} {value} treated as absent")
        return None
    return value


def _allowed_ips(peer: RawPeer, where: str) -> tuple[str, ...]:
    networks: set[str] = set()
    for raw in peer.allowed_ips:
        try:
            networks.add(str(ipaddress.ip_network(raw, strict=False)))
        except ValueError:
            report_malformed("allowed_ip", f"{where}: {raw!r} is not a CIDR range")
    return tuple(sorted(networks))


def _endpoint(value: str | None, where: str) -> str | None:
    if value is None:
        return None
    host, sep, port = value.rpartition(":")
    if sep and host and port.isdigit() and int(port) <= 65535:
        return value
    report_malformed("endpoint", f"{where}: {value!r} is not host:port")
    return None


def normalize_peer(peer: RawPeer, interface: str, resolver: NameResolver) -> PeerRecord | None:
    """Validate one peer; None when its counters are unusable."""
    where = f"{interface}/{peer.public_key}"
    try:
        received = _counter(peer.bytes_received)
        sent = _counter(peer.bytes_sent)
    except ValueError as e:
        report_malformed("peer", f"{where}: {e}")
        return None

    return PeerRecord(
        public_key=peer.public_key,
        friendly_name=resolver.resolve(peer.public_key),
        endpoint=_endpoint(peer.endpoint, where),
        allowed_ips=_allowed_ips(peer, where),
        latest_handshake=_non_negative(peer.latest_handshake, "handshake", where),
        bytes_received=received,
        bytes_sent=sent,
        persistent_keepalive=_non_negative(peer.persistent_keepalive, "keepalive", where),
    )


def normalize(
    raw_interfaces: Iterable[RawInterface], resolver: NameResolver
) -> tuple[InterfaceSnapshot, ...]:
    snapshots: dict[str, InterfaceSnapshot] = {}

    for raw in raw_interfaces:
        if raw.name in snapshots:
            report_malformed("line", f"interface {raw.name!r} listed twice, keeping first")
            continue

        peers: dict[str, PeerRecord] = {}
        # Keys of every record seen, including ones dropped as malformed
        seen: set[str] = set()
        for raw_peer in raw.peers:
            if raw_peer.public_key in seen:
                report_malformed(
                    "peer", f"{raw.name}/{raw_peer.public_key}: duplicate peer, keeping first"
                )
                continue
            seen.add(raw_peer.public_key)
            record = normalize_peer(raw_peer, raw.name, resolver)
            if record is not None:
                peers[record.public_key] = record

        snapshots[raw.name] = InterfaceSnapshot(
            name=raw.name,
            public_key=raw.public_key,
            listen_port=raw.listen_port,
            peers=tuple(peers[key] for key in sorted(peers)),
        )

    return tuple(snapshots[name] for name in sorted(snapshots))
