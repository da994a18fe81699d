import pytest

from busshell_nav import normalize_path, resolve_path, service_to_path, valid_object_path


@pytest.mark.parametrize("current,args,expected", [
    ("/", ["foo"], "/foo"),
    ("/a/b", ["c"], "/a/b/c"),
    ("/a/b", [".."], "/a"),
    ("/a/b", ["..", "..", ".."], "/"),
    ("/a", [".", "b", ".", "c"], "/a/b/c"),
    ("/a", ["b/../c"], "/a/c"),
    ("/a", ["b//c/"], "/a/b/c"),
    ("/", [], "/"),
    ("/x/y", [], "/x/y"),
])
def test_relative_join_is_normalized(current, args, expected):
    result = resolve_path(current, "/prev", "", args)
    assert result == expected
    segments = result.split("/")[1:]
    if result != "/":
        assert all(segments)
        assert "." not in segments and ".." not in segments


@pytest.mark.parametrize("current", ["/", "/a", "/a/b/c"])
def test_dash_returns_previous_path(current):
    assert resolve_path(current, "/some/where", "com.example.Foo", ["-"]) == "/some/where"


def test_dollar_maps_service_name():
    assert resolve_path("/", "/", "com.example.Foo", ["$"]) == "/com/example/Foo"
    assert resolve_path("/x", "/", "a.b.c.d", ["$"]) == "/a/b/c/d"


def test_dollar_without_service_is_rejected():
    candidate = resolve_path("/", "/", "", ["$"])
    assert not valid_object_path(candidate)


def test_single_absolute_token_overrides():
    assert resolve_path("/a/b", "/", "", ["/x/y"]) == "/x/y"
    assert resolve_path("/a/b", "/", "", ["/x/../z/"]) == "/z"


def test_later_absolute_token_does_not_reset():
    assert resolve_path("/a", "/", "", ["b", "/c"]) == "/a/b/c"


def test_leading_double_slash_collapses():
    assert normalize_path("//foo") == "/foo"
    assert normalize_path("///") == "/"


def test_service_to_path():
    assert service_to_path("org.freedesktop.login1") == "/org/freedesktop/login1"
    assert service_to_path("") == ""


@pytest.mark.parametrize("path,valid", [
    ("/", True),
    ("/foo", True),
    ("/org/freedesktop/DBus", True),
    ("/a_b/C9", True),
    ("", False),
    ("foo", False),
    ("/foo/", False),
    ("//foo", False),
    ("/foo-bar", False),
    ("/café", False),
    ("/foo\n", False),
    ("/\n", False),
])
def test_valid_object_path(path, valid):
    assert valid_object_path(path) is valid
