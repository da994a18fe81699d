import io

import pytest
from rich.console import Console
from sdbus.exceptions import DbusFailedError

from busshell import Shell
from busshell_bus import BusKind
from busshell_nav import NavigationContext

SERVICE = "com.example.Svc"

ROOT_XML = """
<node>
  <interface name="org.freedesktop.DBus.Introspectable">
    <method name="Introspect"><arg name="xml" type="s" direction="out"/></method>
  </interface>
  <node name="foo"/>
  <node name="com"/>
</node>
"""

FOO_XML = """
<node name="/foo">
  <interface name="org.freedesktop.DBus.Introspectable">
    <method name="Introspect"><arg type="s" direction="out"/></method>
  </interface>
  <interface name="com.example.Foo">
    <method name="Frob">
      <arg name="count" type="i" direction="in"/>
      <arg name="label" type="s" direction="in"/>
      <arg name="ok" type="b" direction="out"/>
    </method>
    <method name="Reset"/>
    <property name="Size" type="u" access="read"/>
    <property name="Label" type="s" access="readwrite"/>
    <signal name="Changed"><arg type="s"/><arg type="u"/></signal>
  </interface>
</node>
"""

BRANCH_XML = """
<node>
  <node name="example"/>
</node>
"""

EXAMPLE_XML = """
<node>
  <interface name="org.freedesktop.DBus.Properties"/>
  <interface name="com.example.Custom">
    <property name="Config" type="s" access="read"/>
  </interface>
  <interface name="org.freedesktop.DBus.Peer"/>
  <node name="Svc"/>
</node>
"""


class FakeTransport:
    """In-memory stand-in for BusTransport."""

    def __init__(self, kind=BusKind.SESSION):
        self.kind = kind
        self.names = ["org.freedesktop.DBus", ":1.42", SERVICE, "org.other.Thing"]
        self.nodes = {
            (SERVICE, "/"): ROOT_XML,
            (SERVICE, "/foo"): FOO_XML,
            (SERVICE, "/com"): BRANCH_XML,
            (SERVICE, "/com/example"): EXAMPLE_XML,
        }
        self.properties = {
            ("/foo", "com.example.Foo"): {
                "Size": ("u", 7),
                "Label": ("s", '{"a": [1, 2]}'),
            },
        }
        self.failing = set()
        self.calls = []
        self.closed = False

    def list_names(self):
        self.calls.append(("ListNames",))
        return list(self.names)

    def name_has_owner(self, name):
        self.calls.append(("NameHasOwner", name))
        return name in self.names

    def connection_names(self):
        self.calls.append(("ConnectionNames",))
        return [":1.42"]

    def introspect(self, service, path):
        self.calls.append(("Introspect", service, path))
        if (service, path) in self.failing:
            raise DbusFailedError("org.freedesktop.DBus.Error.Failed")
        return self.nodes.get((service, path), "<node/>")

    def get_property(self, service, path, interface, name):
        self.calls.append(("Get", service, path, interface, name))
        return self.properties[(path, interface)][name]

    def get_all_properties(self, service, path, interface):
        self.calls.append(("GetAll", service, path, interface))
        return dict(self.properties.get((path, interface), {}))

    def close(self):
        self.closed = True


class FakeInvoker:
    def __init__(self, status=0):
        self.status = status
        self.argvs = []

    def run(self, argv):
        self.argvs.append(argv)
        return self.status


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def connector(transport):
    opened = []

    def connect(kind, target=None, via="host"):
        opened.append((kind, target, via))
        transport.kind = kind
        return transport

    connect.opened = opened
    return connect


@pytest.fixture
def ctx(connector):
    """Connected to the session bus, nothing else selected."""
    context = NavigationContext(connector=connector)
    context.connect(BusKind.SESSION)
    return context


@pytest.fixture
def service_ctx(ctx):
    ctx.select_service(SERVICE)
    return ctx


@pytest.fixture
def out():
    return Console(file=io.StringIO(), width=200, color_system=None, force_terminal=False)


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def shell(service_ctx, out, invoker):
    return Shell(service_ctx, out=out, invoker=invoker, tmux_reader=lambda: '{"x":1}')


def output(console):
    return console.file.getvalue()
