import pytest
from sdbus.exceptions import DbusFailedError

from busshell_bus import IntrospectionFailed, InvalidServiceName, MalformedReply, NotConnected
from busshell_introspect import (
    Argument,
    fetch_description,
    parse_description,
    synthesize_arg_names,
    valid_service_name,
)

from conftest import FOO_XML, ROOT_XML, SERVICE


@pytest.mark.parametrize("name,valid", [
    ("a.b", True),
    ("org.freedesktop.DBus", True),
    (":1.42", True),
    ("a", False),
    ("", False),
    ("a..b", False),
    (".a.b", False),
    ("a.b.", False),
])
def test_service_name_validity(name, valid):
    assert valid_service_name(name) is valid


def test_parse_keeps_source_order():
    desc = parse_description(FOO_XML)
    assert desc.interface_names == ["org.freedesktop.DBus.Introspectable", "com.example.Foo"]
    assert desc.children == []

    foo = desc.interface("com.example.Foo")
    assert [m.name for m in foo.methods] == ["Frob", "Reset"]
    assert [(p.name, p.type, p.access) for p in foo.properties] == [
        ("Size", "u", "read"),
        ("Label", "s", "readwrite"),
    ]
    frob = foo.method("Frob")
    assert [a.name for a in frob.in_args] == ["count", "label"]
    assert [a.name for a in frob.out_args] == ["ok"]
    assert foo.method("Reset").args == []


def test_parse_children_are_names_only():
    desc = parse_description(ROOT_XML)
    assert desc.children == ["foo", "com"]


def test_unnamed_args_are_synthesized_once():
    desc = parse_description(FOO_XML)
    changed = desc.interface("com.example.Foo").signals[0]
    assert [a.name for a in changed.args] == ["arg0", "arg1"]
    assert all(a.direction == "out" for a in changed.args)

    introspect = desc.interface("org.freedesktop.DBus.Introspectable").method("Introspect")
    assert [a.name for a in introspect.args] == ["arg0"]


def test_synthesize_renames_whole_list_when_first_is_unnamed():
    args = [Argument("", "i"), Argument("named", "s"), Argument("", "u")]
    synthesize_arg_names(args)
    assert [a.name for a in args] == ["arg0", "arg1", "arg2"]
    assert [a.type for a in args] == ["i", "s", "u"]

    synthesize_arg_names(args)
    assert [a.name for a in args] == ["arg0", "arg1", "arg2"]


def test_synthesize_leaves_named_list_alone():
    args = [Argument("x", "i"), Argument("", "s")]
    synthesize_arg_names(args)
    assert [a.name for a in args] == ["x", ""]


def test_method_arg_direction_defaults_to_in():
    desc = parse_description(
        '<node><interface name="a.B"><method name="M"><arg name="v" type="s"/></method></interface></node>'
    )
    assert desc.interface("a.B").method("M").in_args[0].name == "v"


def test_unknown_elements_and_attributes_ignored():
    desc = parse_description("""
        <node xmlns:doc="http://example.com/doc">
          <doc:doc>words</doc:doc>
          <interface name="a.B" extra="1">
            <annotation name="org.freedesktop.DBus.Deprecated" value="true"/>
            <method name="M" color="red"><annotation name="x" value="y"/></method>
            <bogus/>
          </interface>
          <node name="child" weird="yes"/>
        </node>
    """)
    assert desc.interface_names == ["a.B"]
    assert [m.name for m in desc.interfaces[0].methods] == ["M"]
    assert desc.children == ["child"]


def test_empty_node_is_empty():
    assert parse_description("<node/>").is_empty
    assert not parse_description('<node><node name="x"/></node>').is_empty


@pytest.mark.parametrize("text", ["", "not xml", "<node>", "<html/>"])
def test_malformed_reply(text):
    with pytest.raises(MalformedReply):
        parse_description(text)


def test_fetch_requires_connection():
    with pytest.raises(NotConnected):
        fetch_description(None, SERVICE, "/")


def test_fetch_rejects_invalid_service_without_round_trip(transport):
    with pytest.raises(InvalidServiceName):
        fetch_description(transport, "nodots", "/")
    assert transport.calls == []


def test_fetch_wraps_transport_errors(transport):
    transport.failing.add((SERVICE, "/foo"))
    with pytest.raises(IntrospectionFailed) as info:
        fetch_description(transport, SERVICE, "/foo")
    assert isinstance(info.value.__cause__, DbusFailedError)


def test_fetch_malformed(transport):
    transport.nodes[(SERVICE, "/bad")] = "<node"
    with pytest.raises(MalformedReply):
        fetch_description(transport, SERVICE, "/bad")


def test_fetch_is_one_round_trip_each_time(transport):
    fetch_description(transport, SERVICE, "/foo")
    fetch_description(transport, SERVICE, "/foo")
    assert transport.calls == [("Introspect", SERVICE, "/foo")] * 2
