"""State Reader: acquires tunnel state from `wg show ... dump`.

DUMP FORMAT
------------
`wg show all dump` prints one tab-separated line per interface followed
by one line per peer, every line prefixed with the interface name:

  wg0  <private-key>  <public-key>  51820  off
  wg0  <peer-key>  (none)  203.0.113.7:51820  10.0.0.2/32  1700000000  1024  2048  25

`wg show wg0 dump` prints the same lines WITHOUT the leading interface
column.  parse_dump() re-injects the name so both shapes parse the same
way.  Peer fields: public key, preshared key, endpoint, allowed ips,
latest handshake (epoch seconds, 0 = never), rx bytes, tx bytes,
persistent keepalive (seconds or "off").

FAILURE SCOPE
--------------
Reading one interface can fail in two very different ways:

  - the interface vanished (wg reports "No such device"): omit it,
    keep the others.  Interfaces come and go with `wg-quick down`.
  - the stack cannot be queried at all (no `wg` binary, permission
    denied): nothing in this scrape can succeed, raise
    TotalCollectionFailure.

The query itself is serialized with a lock: `wg` talks to the kernel
over netlink and running several copies concurrently under sudo only
multiplies process spawns for identical answers.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from wg_exporter.core.errors import (
    CollectionError,
    InterfaceNotFoundError,
    PartialCollectionError,
    TotalCollectionFailure,
    TransientIOError,
    report_malformed,
)
from wg_exporter.core.metrics import INTERFACE_ERRORS
from wg_exporter.models.snapshot import RawInterface, RawPeer

logger = logging.getLogger(__name__)

ALL_INTERFACES = "all"

_INTERFACE_FIELDS = 5
_PEER_FIELDS = 9

_NOT_FOUND_MARKERS = ("No such device", "does not exist")
_PERMISSION_MARKERS = ("Operation not permitted", "Permission denied")


@runtime_checkable
class StackQuery(Protocol):
    """Returns the raw dump for one interface name, or for "all"."""

    def dump(self, target: str) -> str: ...


class WgShowQuery:
    """Runs `[sudo] wg show <target> dump` as a subprocess."""

    def __init__(
        self,
        *,
        wg_binary: str = "wg",
        prepend_sudo: bool = False,
        timeout: float = 5.0,
    ) -> None:
        self._wg_binary = wg_binary
        self._prepend_sudo = prepend_sudo
        self._timeout = timeout

    def command(self, target: str) -> list[str]:
        cmd = [self._wg_binary, "show", target, "dump"]
        return ["sudo", *cmd] if self._prepend_sudo else cmd

    def dump(self, target: str) -> str:
        cmd = self.command(target)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError:
            raise TotalCollectionFailure(f"{cmd[0]!r} not found on PATH") from None
        except PermissionError:
            raise TotalCollectionFailure(f"not permitted to run {cmd[0]!r}") from None
        except subprocess.TimeoutExpired:
            raise TransientIOError(
                f"`{' '.join(cmd)}` timed out after {self._timeout:g}s"
            ) from None
        except OSError as e:
            raise TransientIOError(f"`{' '.join(cmd)}` failed: {e}") from e

        logger.debug("%s stdout == %r", " ".join(cmd), result.stdout)
        if result.returncode == 0:
            return result.stdout

        stderr = result.stderr.strip()
        logger.debug("%s stderr == %r", " ".join(cmd), stderr)
        if any(marker in stderr for marker in _PERMISSION_MARKERS):
            raise TotalCollectionFailure(f"permission denied: {stderr}")
        if target != ALL_INTERFACES and any(m in stderr for m in _NOT_FOUND_MARKERS):
            raise InterfaceNotFoundError(target)
        raise TransientIOError(
            f"`{' '.join(cmd)}` exited with {result.returncode}: {stderr or 'no output'}"
        )


def _absent(value: str) -> str | None:
    return None if value in ("", "(none)") else value


def _optional_int(value: str) -> int | None:
    if value in ("", "off", "(none)", "0"):
        return None
    return int(value)


def _parse_peer(fields: list[str]) -> RawPeer:
    _, public_key, _preshared, endpoint, allowed_ips, handshake, rx, tx, keepalive = fields
    if not public_key:
        raise ValueError("empty public key")
    allowed = _absent(allowed_ips)
    return RawPeer(
        public_key=public_key,
        endpoint=_absent(endpoint),
        allowed_ips=tuple(ip.strip() for ip in allowed.split(",")) if allowed else (),
        latest_handshake=_optional_int(handshake),
        bytes_received=rx,
        bytes_sent=tx,
        persistent_keepalive=_optional_int(keepalive),
    )


def parse_dump(text: str, interface: str | None = None) -> list[RawInterface]:
    """Parse `wg show <target> dump` output.

    Pass `interface` when the dump came from a single-interface query;
    its lines lack the leading name column.  Lines with the wrong number
    of fields or unparseable numbers are dropped and reported, never
    raised.
    """
    interfaces: dict[str, RawInterface] = {}

    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        fields = line.split("\t")
        if interface is not None:
            fields.insert(0, interface)
        name = fields[0]

        try:
            if len(fields) == _INTERFACE_FIELDS:
                iface = interfaces.setdefault(name, RawInterface(name=name))
                iface.public_key = _absent(fields[2])
                iface.listen_port = _optional_int(fields[3])
            elif len(fields) == _PEER_FIELDS:
                peer = _parse_peer(fields)
                interfaces.setdefault(name, RawInterface(name=name)).peers.append(peer)
            else:
                raise ValueError(f"expected 5 or 9 fields, got {len(fields)}")
        except ValueError as e:
            report_malformed("line", f"dump line {lineno} of {name!r}: {e}")

    return list(interfaces.values())


@dataclass(frozen=True, slots=True)
class ReadResult:
    interfaces: tuple[RawInterface, ...]
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def partial_error(self) -> PartialCollectionError | None:
        return PartialCollectionError(self.failures) if self.failures else None


class StateReader:
    """Reads the configured interfaces, or every interface when none are."""

    def __init__(
        self,
        query: StackQuery,
        interfaces: tuple[str, ...] | list[str] = (),
        *,
        lock_timeout: float = 5.0,
    ) -> None:
        self._query = query
        # dict.fromkeys drops duplicates but keeps the configured order
        self._interfaces = tuple(dict.fromkeys(interfaces))
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()

    @property
    def interfaces(self) -> tuple[str, ...]:
        return self._interfaces or (ALL_INTERFACES,)

    def read(self) -> ReadResult:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise TransientIOError(
                f"network stack query still busy after {self._lock_timeout:g}s"
            )
        try:
            if not self._interfaces:
                return self._read_all()
            return self._read_each()
        finally:
            self._lock.release()

    def _read_all(self) -> ReadResult:
        try:
            text = self._query.dump(ALL_INTERFACES)
        except TotalCollectionFailure:
            raise
        except CollectionError as e:
            raise TotalCollectionFailure(str(e)) from e
        return ReadResult(interfaces=tuple(parse_dump(text)))

    def _read_each(self) -> ReadResult:
        interfaces: list[RawInterface] = []
        failures: dict[str, str] = {}

        for name in self._interfaces:
            try:
                parsed = parse_dump(self._query.dump(name), interface=name)
                if not parsed:
                    raise TransientIOError(f"empty dump for interface {name!r}")
            except TotalCollectionFailure:
                raise
            except CollectionError as e:
                failures[name] = str(e)
                INTERFACE_ERRORS.labels(interface=name).inc()
                logger.warning(
                    "Omitting interface %s: %s", name, e, extra={"interface": name}
                )
                continue
            interfaces.extend(parsed)

        if failures and not interfaces:
            raise TotalCollectionFailure(
                "no interface readable: "
                + "; ".join(f"{n}: {msg}" for n, msg in failures.items())
            )
        return ReadResult(interfaces=tuple(interfaces), failures=failures)
