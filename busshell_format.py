"""
Busshell Format: rendering of descriptions and property values.
"""

from __future__ import annotations

import json
from typing import Any

from rich.pretty import pretty_repr
from rich.text import Text

from busshell_introspect import Argument, Interface, ObjectDescription


HELP_TYPES = """\
Base Types:
bool b
byte y
int16 n uint16 q
int32 i uint32 u
int64 x uint64 t
double d
string s
object path o
signature g
unixFd h
variant v

as -> list[str]
a{ss} -> dict[str, str]
(is) -> tuple[int32, str]
"""


def _args_string(args: list[Argument]) -> str:
    return ", ".join(f"{a.name} {a.type}" for a in args)


def method_signature(method) -> str:
    return f"({_args_string(method.in_args)}) -> ({_args_string(method.out_args)})"


def signal_signature(signal) -> str:
    return f"({_args_string(signal.args)})"


def format_interface(iface: Interface) -> Text:
    """Methods, properties and signals of one interface."""
    out = Text()
    out.append("interface: ")
    out.append(iface.name, style="bold cyan")
    out.append("\n")

    if iface.methods:
        out.append(" methods:\n", style="bold")
        for method in iface.methods:
            out.append("  ")
            out.append(method.name, style="green")
            out.append(method_signature(method) + "\n")

    if iface.properties:
        out.append(" Properties:\n", style="bold")
        for prop in iface.properties:
            out.append("  ")
            out.append(prop.name, style="yellow")
            out.append(f" {prop.type} {prop.access}\n")

    if iface.signals:
        out.append(" Signals:\n", style="bold")
        for signal in iface.signals:
            out.append("  ")
            out.append(signal.name, style="magenta")
            out.append(signal_signature(signal) + "\n")

    out.rstrip()
    return out


def format_listing(description: ObjectDescription, selected: str) -> Text:
    """Interfaces (selected one starred), then children with a trailing /."""
    lines = []
    for name in description.interface_names:
        if name == selected:
            lines.append(Text(f"{name}*", style="bold cyan"))
        else:
            lines.append(Text(name))
    for child in description.children:
        lines.append(Text(f"{child}/", style="blue"))
    return Text("\n").join(lines)


def _reindent_json(text: str, indent: str = "  ") -> str:
    """Re-lay out valid JSON text. Tokens are copied through untouched."""
    out: list[str] = []
    depth = 0
    in_string = escaped = opened = False

    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch in " \t\r\n":
            continue
        if ch in "]}":
            depth -= 1
            if not opened:
                out.append("\n" + indent * depth)
            out.append(ch)
            opened = False
            continue
        if opened:
            out.append("\n" + indent * depth)
            opened = False
        if ch in "[{":
            out.append(ch)
            depth += 1
            opened = True
        elif ch == ",":
            out.append(",\n" + indent * depth)
        elif ch == ":":
            out.append(": ")
        else:
            if ch == '"':
                in_string = True
            out.append(ch)
    return "".join(out)


def format_json_text(text: str) -> str | None:
    """Re-indent text that is a JSON document; None if it is not one."""
    try:
        json.loads(text)
    except ValueError:
        return None
    return _reindent_json(text)


def format_value(value: Any) -> str:
    """Render a property value; JSON strings are pretty-printed."""
    if isinstance(value, str):
        return format_json_text(value) or value
    return pretty_repr(value)


def format_variant(variant: tuple[str, Any]) -> str:
    """Render a (signature, value) variant as returned by Properties.Get."""
    _signature, value = variant
    return format_value(value)
