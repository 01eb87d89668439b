from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Literal

LogLevel = Literal["debug", "info", "warning", "error"]

ENV_PREFIX = "PROMETHEUS_WIREGUARD_EXPORTER_"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(ENV_PREFIX + name, default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be true|false (got {raw!r})")


def _getfloat(name: str, default: str, *, minimum: float = 0.0) -> float:
    raw = _getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number (got {raw!r})") from None
    if value <= minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be > {minimum:g} (got {raw!r})")
    return value


def _getlist(name: str) -> tuple[str, ...]:
    # Accept "wg0,wg1", "wg0 wg1" or a mix of both.
    return tuple(item for item in re.split(r"[,\s]+", _getenv(name, "")) if item)


@dataclass(frozen=True)
class Settings:
    address: str
    port: int
    log_level: LogLevel
    log_json: bool
    interfaces: tuple[str, ...]
    prepend_sudo: bool
    wg_binary: str
    separate_allowed_ips: bool
    export_remote_ip_and_port: bool
    export_latest_handshake_delay: bool
    config_file_names: tuple[str, ...]
    peer_names_file: str | None
    peer_names_refresh_seconds: float
    peer_names_timeout_seconds: float
    scrape_timeout_seconds: float
    exporter_metrics: bool
    tls_cert_file: str | None
    tls_key_file: str | None

    @property
    def tls_enabled(self) -> bool:
        return self.tls_cert_file is not None

    @property
    def peer_names_configured(self) -> bool:
        return bool(self.config_file_names) or self.peer_names_file is not None


def load_settings() -> Settings:
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "9586")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"{ENV_PREFIX}LOG_LEVEL must be debug|info|warning|error "
            f"(got {log_level_raw!r})"
        )

    # VERBOSE_ENABLED wins over LOG_LEVEL.
    if _getbool("VERBOSE_ENABLED", False):
        log_level_raw = "debug"

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}PORT must be an integer (got {port_raw!r})") from None
    if not 0 < port < 65536:
        raise ValueError(f"{ENV_PREFIX}PORT must be in 1..65535 (got {port})")

    tls_cert_file = _getenv("TLS_CERT_FILE", "") or None
    tls_key_file = _getenv("TLS_KEY_FILE", "") or None
    if (tls_cert_file is None) != (tls_key_file is None):
        raise ValueError(
            f"{ENV_PREFIX}TLS_CERT_FILE and {ENV_PREFIX}TLS_KEY_FILE must be set together"
        )

    return Settings(  # type: ignore[arg-type]
        address=_getenv("ADDRESS", "0.0.0.0"),
        port=port,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        interfaces=_getlist("INTERFACES"),
        prepend_sudo=_getbool("PREPEND_SUDO_ENABLED", False),
        wg_binary=_getenv("WG_BINARY", "wg") or "wg",
        separate_allowed_ips=_getbool("SEPARATE_ALLOWED_IPS_ENABLED", False),
        export_remote_ip_and_port=_getbool("EXPORT_REMOTE_IP_AND_PORT_ENABLED", False),
        export_latest_handshake_delay=_getbool("EXPORT_LATEST_HANDSHAKE_DELAY", False),
        config_file_names=_getlist("CONFIG_FILE_NAMES"),
        peer_names_file=_getenv("PEER_NAMES_CONFIG_FILE", "") or None,
        peer_names_refresh_seconds=_getfloat("PEER_NAMES_REFRESH_SECONDS", "60"),
        peer_names_timeout_seconds=_getfloat("PEER_NAMES_TIMEOUT_SECONDS", "2"),
        scrape_timeout_seconds=_getfloat("SCRAPE_TIMEOUT_SECONDS", "5"),
        exporter_metrics=_getbool("EXPORTER_METRICS_ENABLED", True),
        tls_cert_file=tls_cert_file,
        tls_key_file=tls_key_file,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
