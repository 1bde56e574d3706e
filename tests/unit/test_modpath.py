"""Unit tests for module and import path helpers."""

import pytest

from pkgindex import modpath
from pkgindex.errors import InvalidArgument


class TestCheckModulePath:
    """Test module path validation."""

    @pytest.mark.parametrize(
        "path",
        ["github.com/my/module", "golang.org/x/tools", "gopkg.in/yaml.v2", "example.com/m/v2", "std"],
    )
    def test_valid(self, path):
        modpath.check_module_path(path)

    @pytest.mark.parametrize(
        "path",
        [
            "",
            "nodot/module",
            "github.com//double",
            "github.com/trailing/",
            "/github.com/leading",
            "github.com/bad char",
            "github.com/my/module/v1",
            "GitHub.com/upper",
            "github.com/con/module",
        ],
    )
    def test_invalid(self, path):
        with pytest.raises(InvalidArgument):
            modpath.check_module_path(path)


def test_check_import_path_allows_plus():
    modpath.check_import_path("github.com/my/module/c++")
    with pytest.raises(InvalidArgument):
        modpath.check_import_path("github.com/my/module/a b")


def test_escape_path():
    assert modpath.escape_path("github.com/Azure/SDK") == "github.com/!azure/!s!d!k"
    with pytest.raises(InvalidArgument):
        modpath.escape_path("github.com/bad!")


@pytest.mark.parametrize(
    "module_path,inner,expected",
    [
        ("github.com/my/module", ".", "github.com/my/module"),
        ("github.com/my/module", "foo/bar", "github.com/my/module/foo/bar"),
        ("std", "net/http", "net/http"),
    ],
)
def test_package_path(module_path, inner, expected):
    assert modpath.package_path(module_path, inner) == expected


@pytest.mark.parametrize(
    "pkg_path,module_path,expected",
    [
        ("github.com/my/module/v2/foo", "github.com/my/module/v2", "github.com/my/module/foo"),
        ("github.com/my/module/v2", "github.com/my/module/v2", "github.com/my/module"),
        ("github.com/my/module/foo", "github.com/my/module", "github.com/my/module/foo"),
        ("gopkg.in/yaml.v2/sub", "gopkg.in/yaml.v2", "gopkg.in/yaml/sub"),
        ("net/http", "std", "net/http"),
    ],
)
def test_v1_path(pkg_path, module_path, expected):
    assert modpath.v1_path(pkg_path, module_path) == expected


@pytest.mark.parametrize(
    "path,ignored",
    [
        ("github.com/m/testdata/x", True),
        ("github.com/m/_examples", True),
        ("github.com/m/.hidden", True),
        ("github.com/m/internal", False),
    ],
)
def test_ignored_by_go_tool(path, ignored):
    assert modpath.ignored_by_go_tool(path) is ignored


def test_is_vendored():
    assert modpath.is_vendored("github.com/m/vendor/x")
    assert not modpath.is_vendored("github.com/m/vendorx")


class TestParseGoModModule:
    """Test reading the module directive of go.mod files."""

    def test_plain(self):
        assert modpath.parse_go_mod_module(b"module github.com/a/b\n\ngo 1.21\n") == "github.com/a/b"

    def test_quoted_with_comment(self):
        data = b'// a comment\nmodule "github.com/a/b" // trailing\n'
        assert modpath.parse_go_mod_module(data) == "github.com/a/b"

    def test_missing(self):
        assert modpath.parse_go_mod_module(b"go 1.21\n") is None

    def test_not_confused_by_similar_words(self):
        assert modpath.parse_go_mod_module(b"modules are nice\nmodule x.org/y\n") == "x.org/y"
