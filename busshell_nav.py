"""
Busshell Nav: path resolution and the navigation context.

The context tracks where the operator is (bus, service, object path,
selected interface). All of its mutations go through the methods below and
each one either completes or leaves the state exactly as it was.
"""

from __future__ import annotations

import os
import posixpath
import re
from dataclasses import dataclass
from typing import Any, Callable

from busshell_bus import (
    BusKind,
    BusTransport,
    InvalidInterface,
    InvalidPath,
    InvalidServiceName,
    NodeEmpty,
    NoOwner,
    NotConnected,
    connect_bus,
    gdbus_call_argv,
    log,
)
from busshell_introspect import (
    Interface,
    ObjectDescription,
    fetch_description,
    valid_service_name,
)


# ============================================================================
# Constants
# ============================================================================

ROOT = "/"
PREVIOUS_PATH_TOKEN = "-"
SERVICE_PATH_TOKEN = "$"

STANDARD_INTERFACES = frozenset({
    "org.freedesktop.DBus.Introspectable",
    "org.freedesktop.DBus.Properties",
    "org.freedesktop.DBus.Peer",
})

_OBJECT_PATH_RE = re.compile(r"/|(/[A-Za-z0-9_]+)+")


# ============================================================================
# Path resolution
# ============================================================================

def normalize_path(path: str) -> str:
    """Collapse ., .. and repeated separators of an absolute path."""
    if not path:
        return path
    normalized = posixpath.normpath(path)
    # POSIX keeps a leading '//'; object paths do not
    if normalized.startswith("//"):
        normalized = ROOT + normalized.lstrip("/")
    return normalized


def valid_object_path(path: str) -> bool:
    return bool(_OBJECT_PATH_RE.fullmatch(path))


def service_to_path(service: str) -> str:
    """com.example.Foo -> /com/example/Foo; empty service gives ''."""
    if not service:
        return ""
    return ROOT + service.replace(".", "/")


def resolve_path(current: str, previous: str, service: str, args: list[str]) -> str:
    """Candidate path for `cd args`. Not validated; see valid_object_path."""
    if len(args) == 1:
        token = args[0]
        if token == PREVIOUS_PATH_TOKEN:
            return previous
        if token == SERVICE_PATH_TOKEN:
            return normalize_path(service_to_path(service))
        if token.startswith("/"):
            return normalize_path(token)

    # Plain join: later absolute tokens do not reset the path
    return normalize_path("/".join([current, *args]))


# ============================================================================
# Interface auto-selection
# ============================================================================

def auto_select_interface(current: str, description: ObjectDescription) -> str:
    """Interface to select after moving to `description`'s path."""
    names = description.interface_names
    if current and current in names:
        return current
    for name in names:
        if name not in STANDARD_INTERFACES:
            return name
    return ""


# ============================================================================
# Navigation context
# ============================================================================

@dataclass
class Navigation:
    """Outcome of a successful change_directory."""
    path: str
    auto_selected: str | None = None


Connector = Callable[..., BusTransport]


class NavigationContext:
    """Session state: connection, service, path and interface."""

    def __init__(self, connector: Connector = connect_bus):
        self._connector = connector
        self.transport: BusTransport | None = None
        self.kind = BusKind.NONE
        self.service = ""
        self.path = ROOT
        self.previous_path = ROOT
        self.interface = ""

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def connect(self, kind: BusKind, target: str | None = None, via: str = "host"):
        """Open a bus and reset navigation. State is untouched on failure."""
        if kind is BusKind.OTHER:
            transport = self._connector(kind, target, via)
        else:
            transport = self._connector(kind)
        if self.transport is not None and self.transport is not transport:
            self.transport.close()
        self.transport = transport
        self.kind = kind
        self.service = ""
        self.path = ROOT
        self.previous_path = ROOT
        self.interface = ""

    def select_service(self, name: str):
        transport = self._require_transport()
        if not valid_service_name(name):
            raise InvalidServiceName(name)
        if not transport.name_has_owner(name):
            raise NoOwner(name)
        self.service = name
        self.path = ROOT
        log("SERVICE", {"service": name})

    def change_directory(self, args: list[str]) -> Navigation:
        target = resolve_path(self.path, self.previous_path, self.service, args)
        if not valid_object_path(target):
            raise InvalidPath(target)

        description = self.describe(target)
        if description.is_empty:
            raise NodeEmpty(target)

        self.previous_path = self.path
        self.path = target

        selected = auto_select_interface(self.interface, description)
        auto_selected = selected if selected and selected != self.interface else None
        self.interface = selected
        log("CD", {"path": target, "interface": selected})
        return Navigation(target, auto_selected)

    def select_interface(self, name: str):
        description = self.describe()
        if description.interface(name) is None:
            raise InvalidInterface(f"invalid interface: {name!r}")
        self.interface = name

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def describe(self, path: str | None = None) -> ObjectDescription:
        return fetch_description(self.transport, self.service, path or self.path)

    def selected_interface(self) -> Interface:
        """Fresh description of the selected interface at the current path."""
        self._require_interface()
        description = self.describe()
        iface = description.interface(self.interface)
        if iface is None:
            raise InvalidInterface(f"interface {self.interface} not found at {self.path}")
        return iface

    def list_services(self) -> list[str]:
        """Well-known names on the bus, unique ':x.y' names left out."""
        names = self._require_transport().list_names()
        return [n for n in names if not n.startswith(":")]

    def get_property(self, name: str) -> tuple[str, Any]:
        transport = self._require_transport()
        self._require_interface()
        return transport.get_property(self.service, self.path, self.interface, name)

    def get_all_properties(self) -> list[tuple[str, tuple[str, Any]]]:
        """All properties of the selected interface, sorted by name."""
        transport = self._require_transport()
        self._require_interface()
        props = transport.get_all_properties(self.service, self.path, self.interface)
        return sorted(props.items())

    def call_argv(self, method: str, args: list[str]) -> list[str]:
        self._require_interface()
        return gdbus_call_argv(self.kind, self.service, self.path, self.interface, method, args)

    def connection_names(self) -> list[str]:
        return self._require_transport().connection_names()

    def describe_connection(self) -> str:
        return self.kind.description

    def info(self) -> dict:
        return {
            "connection": self.describe_connection(),
            "service": self.service,
            "path": self.path,
            "interface": self.interface,
            "pid": os.getpid(),
        }

    def _require_transport(self) -> BusTransport:
        if self.transport is None:
            raise NotConnected()
        return self.transport

    def _require_interface(self):
        if not self.interface:
            raise InvalidInterface("no interface selected")
