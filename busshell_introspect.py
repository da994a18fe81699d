"""
Busshell Introspect: object descriptions and the introspection client.

A D-Bus object describes itself with an XML document:

    <node>
      <interface name="com.example.Foo">
        <method name="Frob">
          <arg name="x" type="i" direction="in"/>
          <arg type="s" direction="out"/>
        </method>
        <property name="Size" type="u" access="read"/>
        <signal name="Changed"><arg type="s"/></signal>
      </interface>
      <node name="child"/>
    </node>

Children only carry a name; going deeper means introspecting them in turn.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from sdbus.exceptions import SdBusBaseError

from busshell_bus import (
    BusTransport,
    IntrospectionFailed,
    InvalidServiceName,
    MalformedReply,
    NotConnected,
    log,
)


# ============================================================================
# Model
# ============================================================================

@dataclass
class Argument:
    name: str
    type: str
    direction: str = "in"


@dataclass
class Method:
    name: str
    args: list[Argument] = field(default_factory=list)

    @property
    def in_args(self) -> list[Argument]:
        return [a for a in self.args if a.direction == "in"]

    @property
    def out_args(self) -> list[Argument]:
        return [a for a in self.args if a.direction == "out"]


@dataclass
class Signal:
    name: str
    args: list[Argument] = field(default_factory=list)


@dataclass
class Property:
    name: str
    type: str
    access: str


@dataclass
class Interface:
    name: str
    methods: list[Method] = field(default_factory=list)
    properties: list[Property] = field(default_factory=list)
    signals: list[Signal] = field(default_factory=list)

    def method(self, name: str) -> Method | None:
        return next((m for m in self.methods if m.name == name), None)

    def property(self, name: str) -> Property | None:
        return next((p for p in self.properties if p.name == name), None)


@dataclass
class ObjectDescription:
    """Parsed introspection result for a single object path."""
    interfaces: list[Interface] = field(default_factory=list)
    children: list[str] = field(default_factory=list)

    @property
    def interface_names(self) -> list[str]:
        return [i.name for i in self.interfaces]

    @property
    def is_empty(self) -> bool:
        return len(self.interfaces) + len(self.children) == 0

    def interface(self, name: str) -> Interface | None:
        return next((i for i in self.interfaces if i.name == name), None)


# ============================================================================
# Parsing
# ============================================================================

def synthesize_arg_names(args: list[Argument]) -> list[Argument]:
    """Name every argument argN when the list's first argument is unnamed."""
    if args and not args[0].name:
        for idx, arg in enumerate(args):
            arg.name = f"arg{idx}"
    return args


def _parse_args(element: ET.Element, default_direction: str) -> list[Argument]:
    args = [
        Argument(
            name=a.get("name", ""),
            type=a.get("type", ""),
            direction=a.get("direction", default_direction),
        )
        for a in element.findall("arg")
    ]
    return synthesize_arg_names(args)


def _parse_interface(element: ET.Element) -> Interface:
    return Interface(
        name=element.get("name", ""),
        methods=[
            Method(m.get("name", ""), _parse_args(m, "in"))
            for m in element.findall("method")
        ],
        properties=[
            Property(p.get("name", ""), p.get("type", ""), p.get("access", ""))
            for p in element.findall("property")
        ],
        # Signal args only ever flow out of the object
        signals=[
            Signal(s.get("name", ""), _parse_args(s, "out"))
            for s in element.findall("signal")
        ],
    )


def parse_description(xml_text: str) -> ObjectDescription:
    """Parse an Introspect reply. Raises MalformedReply."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise MalformedReply(f"introspection reply is not valid XML: {e}") from e

    if root.tag != "node":
        raise MalformedReply(f"introspection reply root is <{root.tag}>, expected <node>")

    return ObjectDescription(
        interfaces=[_parse_interface(i) for i in root.findall("interface")],
        children=[n.get("name") for n in root.findall("node") if n.get("name")],
    )


# ============================================================================
# Client
# ============================================================================

def valid_service_name(name: str) -> bool:
    """Non-empty and at least two non-empty dot-separated segments."""
    if not name:
        return False
    parts = name.split(".")
    return len(parts) >= 2 and all(parts)


def fetch_description(transport: BusTransport | None, service: str, path: str) -> ObjectDescription:
    """Introspect (service, path) once and parse the reply."""
    if transport is None:
        raise NotConnected()
    if not valid_service_name(service):
        raise InvalidServiceName(service)

    try:
        xml_text = transport.introspect(service, path)
    except SdBusBaseError as e:
        log("INTROSPECT", {"service": service, "path": path, "error": str(e)})
        raise IntrospectionFailed(f"introspect {service} {path} failed: {e}") from e

    description = parse_description(xml_text)
    log("INTROSPECT", {
        "service": service,
        "path": path,
        "interfaces": len(description.interfaces),
        "children": len(description.children),
    })
    return description
