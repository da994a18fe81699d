"""
Busshell Bus: blocking D-Bus transport, errors and session log.

Everything that crosses the process boundary lives here: opening a bus,
the three bus-daemon and object queries the navigator needs, property
reads, the external `gdbus` invoker and the tmux buffer reader.

Log records:
    [TAG] {"compact":"json"}       - one line per record, appended to the
                                     session log file (see open_log)
"""

from __future__ import annotations

import enum
import json
import os
import subprocess
from pathlib import Path
from typing import Any, TextIO

from sdbus import (
    DbusInterfaceCommon,
    dbus_method,
    sd_bus_open_system,
    sd_bus_open_system_machine,
    sd_bus_open_system_remote,
    sd_bus_open_user,
)
from sdbus.exceptions import SdBusBaseError
from sdbus.sd_bus_internals import SdBus


# ============================================================================
# Constants
# ============================================================================

DBUS_DAEMON_NAME = "org.freedesktop.DBus"
DBUS_DAEMON_PATH = "/org/freedesktop/DBus"
INTROSPECTABLE_INTERFACE = "org.freedesktop.DBus.Introspectable"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"


# ============================================================================
# Errors
# ============================================================================

class BusShellError(Exception):
    """Base for every error reported back to the operator."""


class NotConnected(BusShellError):
    def __init__(self, msg: str = "conn is nil"):
        super().__init__(msg)


class InvalidServiceName(BusShellError):
    def __init__(self, name: str):
        super().__init__(f"service name is invalid: {name!r}")
        self.name = name


class NoOwner(BusShellError):
    def __init__(self, name: str):
        super().__init__(f"name has no owner: {name!r}")
        self.name = name


class IntrospectionFailed(BusShellError):
    """Remote Introspect call failed; the sdbus error is the __cause__."""


class MalformedReply(BusShellError):
    """Introspection reply is not a usable <node> document."""


class InvalidPath(BusShellError):
    def __init__(self, path: str):
        super().__init__(f"cd target is not a valid path: {path!r}")
        self.path = path


class InvalidInterface(BusShellError):
    """Interface is not present at the current path, or none is selected."""


class NodeEmpty(BusShellError):
    def __init__(self, path: str):
        super().__init__(f"failed to cd to {path}")
        self.path = path


class ConnectFailed(BusShellError):
    """Opening the bus failed."""


class CallFailed(BusShellError):
    """A remote call or external helper failed."""


# ============================================================================
# Logging
# ============================================================================

_log_sink: TextIO | None = None
_log_path: Path | None = None


def open_log(path: str | Path) -> Path:
    """Start appending log records to path. Returns the resolved path."""
    global _log_sink, _log_path
    close_log()
    _log_path = Path(path)
    _log_sink = _log_path.open("a", encoding="utf-8")
    return _log_path


def close_log(remove: bool = False):
    """Stop logging; optionally delete the log file."""
    global _log_sink, _log_path
    if _log_sink is not None:
        _log_sink.close()
        if remove and _log_path is not None:
            _log_path.unlink(missing_ok=True)
    _log_sink = None
    _log_path = None


def log(tag: str, msg: dict):
    """Append one compact JSON record to the session log."""
    if _log_sink is None:
        return
    compact = json.dumps(msg, separators=(",", ":"), default=str)
    print(f"[{tag}] {compact}", file=_log_sink, flush=True)


# ============================================================================
# Bus kinds
# ============================================================================

class BusKind(enum.Enum):
    NONE = "none"
    SESSION = "session"
    SYSTEM = "system"
    OTHER = "other"

    @property
    def description(self) -> str:
        return BUS_DESCRIPTIONS[self]


BUS_DESCRIPTIONS = {
    BusKind.NONE: "conn is nil",
    BusKind.SESSION: "session bus",
    BusKind.SYSTEM: "system bus",
    BusKind.OTHER: "other bus",
}

# Words accepted by `connect`, mapped to the bus they open
BUS_ALIASES = {
    "session": BusKind.SESSION,
    "e": BusKind.SESSION,
    "system": BusKind.SYSTEM,
    "y": BusKind.SYSTEM,
}


# ============================================================================
# D-Bus proxies
# ============================================================================

class FreedesktopDBus(DbusInterfaceCommon, interface_name=DBUS_DAEMON_NAME):
    @dbus_method("", "as")
    def list_names(self) -> list[str]:
        raise NotImplementedError

    @dbus_method("s", "b")
    def name_has_owner(self, name: str) -> bool:
        raise NotImplementedError

    @dbus_method("s", "u")
    def get_connection_unix_process_id(self, name: str) -> int:
        raise NotImplementedError


# ============================================================================
# Transport
# ============================================================================

class BusTransport:
    """One open bus connection and the blocking queries made over it."""

    def __init__(self, bus: SdBus, kind: BusKind, target: str | None = None):
        self.bus = bus
        self.kind = kind
        self.target = target
        self._daemon = FreedesktopDBus(DBUS_DAEMON_NAME, DBUS_DAEMON_PATH, bus)

    def list_names(self) -> list[str]:
        try:
            return list(self._daemon.list_names())
        except SdBusBaseError as e:
            raise CallFailed(f"ListNames failed: {e}") from e

    def name_has_owner(self, name: str) -> bool:
        try:
            return bool(self._daemon.name_has_owner(name))
        except SdBusBaseError as e:
            raise CallFailed(f"NameHasOwner({name}) failed: {e}") from e

    def connection_names(self) -> list[str]:
        """Unique names on the bus that belong to this process."""
        pid = os.getpid()
        owned = []
        for name in self.list_names():
            if not name.startswith(":"):
                continue
            try:
                if self._daemon.get_connection_unix_process_id(name) == pid:
                    owned.append(name)
            except SdBusBaseError as e:
                # Peer went away between ListNames and this lookup
                log("NAMES", {"name": name, "error": str(e)})
        return owned

    def _call(self, service: str, path: str, interface: str, member: str,
              signature: str = "", *args: Any) -> Any:
        message = self.bus.new_method_call_message(service, path, interface, member)
        if signature:
            message.append_data(signature, *args)
        return self.bus.call(message).get_contents()

    def introspect(self, service: str, path: str) -> str:
        """Raw Introspect reply. sdbus errors propagate to the caller."""
        return self._call(service, path, INTROSPECTABLE_INTERFACE, "Introspect")

    def get_property(self, service: str, path: str, interface: str, name: str) -> tuple[str, Any]:
        """Properties.Get; returns the (signature, value) variant."""
        try:
            return self._call(service, path, PROPERTIES_INTERFACE, "Get",
                              "ss", interface, name)
        except SdBusBaseError as e:
            raise CallFailed(f"Get {interface}.{name} failed: {e}") from e

    def get_all_properties(self, service: str, path: str, interface: str) -> dict[str, tuple[str, Any]]:
        try:
            return dict(self._call(service, path, PROPERTIES_INTERFACE, "GetAll",
                                   "s", interface))
        except SdBusBaseError as e:
            raise CallFailed(f"GetAll {interface} failed: {e}") from e

    def close(self):
        self.bus.close()


# Other-bus openers, keyed by the word used after `connect`
OTHER_OPENERS = {
    "host": sd_bus_open_system_remote,
    "machine": sd_bus_open_system_machine,
}


def connect_bus(kind: BusKind, target: str | None = None, via: str = "host") -> BusTransport:
    """Open a bus. `target`/`via` only apply to BusKind.OTHER."""
    try:
        if kind is BusKind.SESSION:
            bus = sd_bus_open_user()
        elif kind is BusKind.SYSTEM:
            bus = sd_bus_open_system()
        elif kind is BusKind.OTHER:
            opener = OTHER_OPENERS.get(via)
            if opener is None or not target:
                raise ConnectFailed(f"other bus needs one of {sorted(OTHER_OPENERS)} and a target")
            bus = opener(target)
        else:
            raise ConnectFailed(f"cannot connect to bus kind {kind.value!r}")
    except SdBusBaseError as e:
        raise ConnectFailed(f"failed to open {kind.description}: {e}") from e

    log("CONN", {"kind": kind.value, "target": target})
    return BusTransport(bus, kind, target)


# ============================================================================
# External helpers
# ============================================================================

GDBUS_BUS_FLAGS = {
    BusKind.SESSION: "-e",
    BusKind.SYSTEM: "-y",
}


def gdbus_call_argv(kind: BusKind, service: str, path: str, interface: str,
                    method: str, args: list[str]) -> list[str]:
    """Build a `gdbus call` command line for the given target."""
    if kind is BusKind.NONE:
        raise NotConnected()
    flag = GDBUS_BUS_FLAGS.get(kind)
    if flag is None:
        raise CallFailed(f"call is not supported on the {kind.description}")
    return [
        "gdbus", "call", flag,
        "-d", service,
        "-o", path,
        "-m", f"{interface}.{method}",
        *args,
    ]


class GdbusInvoker:
    """Runs a method-call command line, output going straight to the terminal."""

    def run(self, argv: list[str]) -> int:
        log("CALL", {"argv": argv})
        try:
            result = subprocess.run(argv)
        except OSError as e:
            raise CallFailed(f"failed to run {argv[0]}: {e}") from e
        return result.returncode


def read_tmux_buffer() -> str:
    """Contents of the current tmux paste buffer."""
    try:
        result = subprocess.run(["tmux", "show-buffer"], capture_output=True, text=True)
    except OSError as e:
        raise CallFailed(f"failed to run tmux: {e}") from e
    if result.returncode != 0:
        raise CallFailed(f"tmux show-buffer failed: {result.stderr.strip()}")
    return result.stdout
