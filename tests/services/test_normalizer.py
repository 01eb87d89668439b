from __future__ import annotations

import random

import pytest
from prometheus_client import REGISTRY

from tests.conftest import DUMP_ALL, KEY_A, KEY_B, KEY_C
from wg_exporter.models.snapshot import RawInterface, RawPeer
from wg_exporter.services.normalizer import U64_MAX, normalize
from wg_exporter.services.wg_reader import parse_dump


class DictResolver:
    def __init__(self, names: dict[str, str] | None = None) -> None:
        self.names = names or {}

    def resolve(self, public_key: str) -> str | None:
        return self.names.get(public_key)


def _peer(public_key: str, **overrides) -> RawPeer:
    fields = dict(
        public_key=public_key,
        endpoint=None,
        allowed_ips=(),
        latest_handshake=None,
        bytes_received="0",
        bytes_sent="0",
        persistent_keepalive=None,
    )
    fields.update(overrides)
    return RawPeer(**fields)


def _malformed(kind: str) -> float:
    value = REGISTRY.get_sample_value(
        "wireguard_exporter_malformed_records_total", {"kind": kind}
    )
    return value if value is not None else 0.0


def test_normalize_sorts_interfaces_and_peers() -> None:
    raw = [
        RawInterface("wg1", peers=[_peer(KEY_C)]),
        RawInterface("wg0", peers=[_peer(KEY_B), _peer(KEY_A)]),
    ]
    snapshots = normalize(raw, DictResolver())
    assert [s.name for s in snapshots] == ["wg0", "wg1"]
    assert [p.public_key for p in snapshots[0].peers] == sorted([KEY_A, KEY_B])


def test_normalize_is_independent_of_collection_order() -> None:
    raw = parse_dump(DUMP_ALL)
    shuffled = parse_dump(DUMP_ALL)
    shuffled.reverse()
    for iface in shuffled:
        random.Random(7).shuffle(iface.peers)

    assert normalize(raw, DictResolver()) == normalize(shuffled, DictResolver())


def test_normalize_converts_counters_and_resolves_names() -> None:
    (wg0,) = normalize(
        [RawInterface("wg0", peers=[_peer(KEY_A, bytes_received="1000", bytes_sent="500")])],
        DictResolver({KEY_A: "alice"}),
    )
    (peer,) = wg0.peers
    assert peer.bytes_received == 1000
    assert peer.bytes_sent == 500
    assert peer.friendly_name == "alice"
    assert peer.label_name == "alice"


def test_unmapped_peer_falls_back_to_public_key() -> None:
    (wg0,) = normalize([RawInterface("wg0", peers=[_peer(KEY_A)])], DictResolver())
    assert wg0.peers[0].friendly_name is None
    assert wg0.peers[0].label_name == KEY_A


def test_counter_accepts_full_u64_range() -> None:
    (wg0,) = normalize(
        [RawInterface("wg0", peers=[_peer(KEY_A, bytes_received=str(U64_MAX))])],
        DictResolver(),
    )
    assert wg0.peers[0].bytes_received == U64_MAX


def test_peer_with_invalid_counter_is_dropped() -> None:
    before = _malformed("peer")
    raw = [
        RawInterface(
            "wg0",
            peers=[
                _peer(KEY_A, bytes_received="lots"),
                _peer(KEY_B, bytes_sent=str(U64_MAX + 1)),
                _peer(KEY_C, bytes_sent="-1"),
                _peer("ok-peer"),
            ],
        )
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert [p.public_key for p in wg0.peers] == ["ok-peer"]
    assert _malformed("peer") - before == 3


@pytest.mark.parametrize("value", ["+5", "1_000", " 7", "7\n", "\u0661\u0662", ""])
def test_counter_must_be_plain_ascii_digits(value: str) -> None:
    before = _malformed("peer")
    raw = [RawInterface("wg0", peers=[_peer(KEY_A, bytes_received=value)])]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.peers == ()
    assert _malformed("peer") - before == 1


def test_invalid_allowed_ip_is_dropped_not_fatal() -> None:
    before = _malformed("allowed_ip")
    raw = [
        RawInterface(
            "wg0",
            peers=[_peer(KEY_A, allowed_ips=("10.0.0.2/32", "not-a-cidr", "10.0.0.9/33"))],
        )
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.peers[0].allowed_ips == ("10.0.0.2/32",)
    assert _malformed("allowed_ip") - before == 2


def test_allowed_ips_are_normalized_sorted_and_deduplicated() -> None:
    raw = [
        RawInterface(
            "wg0",
            peers=[_peer(KEY_A, allowed_ips=("10.0.1.7/24", "10.0.0.2/32", "10.0.0.2/32"))],
        )
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.peers[0].allowed_ips == ("10.0.0.2/32", "10.0.1.0/24")


def test_invalid_endpoint_is_sanitized() -> None:
    raw = [RawInterface("wg0", peers=[_peer(KEY_A, endpoint="garbage")])]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.peers[0].endpoint is None


def test_endpoint_split_into_ip_and_port() -> None:
    raw = [
        RawInterface(
            "wg0",
            peers=[
                _peer(KEY_A, endpoint="203.0.113.7:51820"),
                _peer(KEY_B, endpoint="[2001:db8::1]:51821"),
                _peer(KEY_C),
            ],
        )
    ]
    peers = {p.public_key: p for p in normalize(raw, DictResolver())[0].peers}
    assert (peers[KEY_A].remote_ip, peers[KEY_A].remote_port) == ("203.0.113.7", "51820")
    assert (peers[KEY_B].remote_ip, peers[KEY_B].remote_port) == ("2001:db8::1", "51821")
    assert (peers[KEY_C].remote_ip, peers[KEY_C].remote_port) == (None, None)


def test_negative_timestamps_default_to_absent() -> None:
    raw = [
        RawInterface(
            "wg0", peers=[_peer(KEY_A, latest_handshake=-5, persistent_keepalive=-1)]
        )
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.peers[0].latest_handshake is None
    assert wg0.peers[0].persistent_keepalive is None


def test_duplicate_peer_keeps_first() -> None:
    raw = [
        RawInterface(
            "wg0",
            peers=[_peer(KEY_A, bytes_sent="1"), _peer(KEY_A, bytes_sent="2")],
        )
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert len(wg0.peers) == 1
    assert wg0.peers[0].bytes_sent == 1


def test_duplicate_of_dropped_peer_is_not_kept() -> None:
    raw = [
        RawInterface(
            "wg0",
            peers=[_peer(KEY_A, bytes_sent="broken"), _peer(KEY_A, bytes_sent="2")],
        )
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.peers == ()


def test_duplicate_interface_keeps_first() -> None:
    raw = [
        RawInterface("wg0", listen_port=1, peers=[_peer(KEY_A)]),
        RawInterface("wg0", listen_port=2),
    ]
    (wg0,) = normalize(raw, DictResolver())
    assert wg0.listen_port == 1
    assert len(wg0.peers) == 1


def test_interface_without_peers_is_kept() -> None:
    (wg0,) = normalize([RawInterface("wg0", public_key="pub", listen_port=51820)], DictResolver())
    assert wg0.peers == ()
    assert wg0.public_key == "pub"
