from __future__ import annotations

import json
from pathlib import Path

from fastapi.testclient import TestClient

from tests.conftest import KEY_A, KEY_B, FakeQuery, make_settings
from wg_exporter.main import build_pipeline, create_app
from wg_exporter.services.wg_reader import WgShowQuery

WG0_CONF = f"""\
[Interface]
PrivateKey = cHJpdmF0ZTA=
ListenPort = 51820

[Peer]
# friendly_name = alice-laptop
PublicKey = {KEY_A}
AllowedIPs = 10.0.0.2/32

[Peer]
PublicKey = {KEY_B}
# friendly_name = bob-tablet
AllowedIPs = 10.0.0.3/32
"""


def test_build_pipeline_uses_wg_show_by_default() -> None:
    pipeline = build_pipeline(make_settings(prepend_sudo=True, wg_binary="/usr/bin/wg"))
    query = pipeline.reader._query
    assert isinstance(query, WgShowQuery)
    assert query.command("all") == ["sudo", "/usr/bin/wg", "show", "all", "dump"]


def test_build_pipeline_copies_options_and_timeout() -> None:
    settings = make_settings(
        interfaces=("wg0",),
        separate_allowed_ips=True,
        export_latest_handshake_delay=True,
        scrape_timeout_seconds=3.0,
    )
    pipeline = build_pipeline(settings, query=FakeQuery({}))
    assert pipeline.reader.interfaces == ("wg0",)
    assert pipeline.options.separate_allowed_ips is True
    assert pipeline.options.export_remote_ip_and_port is False
    assert pipeline.options.export_latest_handshake_delay is True
    assert pipeline.timeout == 3.0
    assert pipeline.reader._lock_timeout == 1.5


def test_build_pipeline_without_name_sources() -> None:
    pipeline = build_pipeline(make_settings(), query=FakeQuery({}))
    assert pipeline.resolver.status == "not_configured"


def test_names_from_config_files_reach_metrics(tmp_path: Path, query: FakeQuery) -> None:
    conf = tmp_path / "wg0.conf"
    conf.write_text(WG0_CONF, encoding="utf-8")
    settings = make_settings(config_file_names=(str(conf),))

    with TestClient(create_app(settings, query=query)) as client:
        text = client.get("/metrics").text

    assert 'friendly_name="alice-laptop"' in text
    assert 'friendly_name="bob-tablet"' in text


def test_json_names_override_config_files(tmp_path: Path, query: FakeQuery) -> None:
    conf = tmp_path / "wg0.conf"
    conf.write_text(WG0_CONF, encoding="utf-8")
    names = tmp_path / "peers.json"
    names.write_text(json.dumps({KEY_B: "bob-phone"}), encoding="utf-8")
    settings = make_settings(config_file_names=(str(conf),), peer_names_file=str(names))

    with TestClient(create_app(settings, query=query)) as client:
        text = client.get("/metrics").text

    assert 'friendly_name="alice-laptop"' in text
    assert 'friendly_name="bob-phone"' in text
    assert "bob-tablet" not in text


def test_startup_survives_missing_names_file(tmp_path: Path, query: FakeQuery) -> None:
    settings = make_settings(peer_names_file=str(tmp_path / "missing.json"))
    with TestClient(create_app(settings, query=query)) as client:
        assert client.get("/metrics").status_code == 200
        health = client.get("/health").json()
    assert health["peer_names"]["status"] == "stale"
    assert "failed to read" in health["peer_names"]["error"]


def test_docs_are_disabled(client: TestClient) -> None:
    assert client.get("/docs").status_code == 404
