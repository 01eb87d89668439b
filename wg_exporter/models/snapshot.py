from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class RawPeer:
    """One peer line of `wg show dump`, fields as parsed.

    None means the dump reported the field as absent: `(none)` for
    endpoint, `0` for a handshake that never happened, `off` for
    keepalive.  Counters stay as the raw strings so the normalizer owns
    their validation.
    """

    public_key: str
    endpoint: str | None
    allowed_ips: tuple[str, ...]
    latest_handshake: int | None
    bytes_received: str
    bytes_sent: str
    persistent_keepalive: int | None


@dataclass(slots=True)
class RawInterface:
    name: str
    public_key: str | None = None
    listen_port: int | None = None
    peers: list[RawPeer] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PeerRecord:
    public_key: str
    friendly_name: str | None
    endpoint: str | None
    allowed_ips: tuple[str, ...]
    latest_handshake: int | None
    bytes_received: int
    bytes_sent: int
    persistent_keepalive: int | None

    @property
    def label_name(self) -> str:
        """Friendly name, or the public key when none is mapped."""
        return self.friendly_name or self.public_key

    @property
    def remote_ip(self) -> str | None:
        if self.endpoint is None:
            return None
        host, _, _ = self.endpoint.rpartition(":")
        # IPv6 endpoints come bracketed: [fd00::1]:51820
        return host.strip("[]") or None

    @property
    def remote_port(self) -> str | None:
        if self.endpoint is None:
            return None
        host, _, port = self.endpoint.rpartition(":")
        return port if host else None


@dataclass(frozen=True, slots=True)
class InterfaceSnapshot:
    name: str
    public_key: str | None
    listen_port: int | None
    peers: tuple[PeerRecord, ...]
