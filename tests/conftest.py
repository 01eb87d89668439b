from __future__ import annotations

import sys
import time
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import wg_exporter` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wg_exporter.core.config import SETTINGS, Settings  # noqa: E402
from wg_exporter.core.errors import CollectionError, MappingSourceError  # noqa: E402
from wg_exporter.main import create_app  # noqa: E402

KEY_A = "xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg="
KEY_B = "TrMvSoP4jYQlY6RIzBgbssQqY3vxI2Pi+y71lOWWXX0="
KEY_C = "gN65BkIKy1eCE9pP1wdc8ROUtkHLF2PfAqYdyYBz6EA="

# `wg show all dump`, peers deliberately out of key order
DUMP_ALL = (
    "wg0\tcHJpdmF0ZTA=\tcHVibGljMA==\t51820\toff\n"
    f"wg0\t{KEY_B}\t(none)\t203.0.113.7:51820\t10.0.0.3/32\t1700000000\t2048\t4096\t25\n"
    f"wg0\t{KEY_A}\t(none)\t(none)\t10.0.0.2/32,fd00::2/128\t0\t1000\t500\toff\n"
    "wg1\tcHJpdmF0ZTE=\tcHVibGljMQ==\t51821\toff\n"
    f"wg1\t{KEY_C}\t(none)\t[2001:db8::1]:51820\t10.1.0.0/24\t1700000100\t10\t20\toff\n"
)

# `wg show wg0 dump` and `wg show wg1 dump`: no leading interface column
DUMP_WG0 = "".join(line.split("\t", 1)[1] + "\n" for line in DUMP_ALL.splitlines()[:3])
DUMP_WG1 = "".join(line.split("\t", 1)[1] + "\n" for line in DUMP_ALL.splitlines()[3:])


class FakeQuery:
    """StackQuery answering from a dict; values may be exceptions."""

    def __init__(self, answers: dict[str, str | CollectionError]) -> None:
        self.answers = answers
        self.calls: list[str] = []

    def dump(self, target: str) -> str:
        self.calls.append(target)
        answer = self.answers[target]
        if isinstance(answer, Exception):
            raise answer
        return answer


class SlowQuery:
    """StackQuery that answers only after `delay` seconds.

    Keep the delay short: the event loop waits for worker threads on
    shutdown, even after the scrape itself has timed out.
    """

    def __init__(self, delay: float, answer: str = DUMP_ALL) -> None:
        self.delay = delay
        self.answer = answer

    def dump(self, target: str) -> str:
        time.sleep(self.delay)
        return self.answer


class StaticSource:
    def __init__(self, names: dict[str, str]) -> None:
        self.names = names
        self.loads = 0

    def load(self) -> dict[str, str]:
        self.loads += 1
        return dict(self.names)


class FailingSource:
    def load(self) -> dict[str, str]:
        raise MappingSourceError("peer names file unreadable")


def make_settings(**overrides) -> Settings:
    base = replace(
        SETTINGS,
        interfaces=(),
        config_file_names=(),
        peer_names_file=None,
        scrape_timeout_seconds=2.0,
        peer_names_timeout_seconds=1.0,
        exporter_metrics=False,
        separate_allowed_ips=False,
        export_remote_ip_and_port=False,
        export_latest_handshake_delay=False,
    )
    return replace(base, **overrides)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def query() -> FakeQuery:
    return FakeQuery({"all": DUMP_ALL, "wg0": DUMP_WG0, "wg1": DUMP_WG1})


@pytest.fixture
def client(settings: Settings, query: FakeQuery) -> Iterator[TestClient]:
    app = create_app(settings, query=query, source=StaticSource({KEY_B: "bob-phone"}))
    with TestClient(app) as c:
        yield c
