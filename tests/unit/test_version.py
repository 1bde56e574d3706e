"""Unit tests for semantic version handling."""

import pytest

from pkgindex import version
from pkgindex.version import VersionKind


@pytest.mark.parametrize(
    "v,valid",
    [
        ("v1.0.0", True),
        ("v1.2.3-pre.1", True),
        ("v1.2.3+incompatible", True),
        ("v0.0.0-20190101000000-abcdefabcdef", True),
        ("v1", True),
        ("1.0.0", False),
        ("v1.0.0-01", False),
        ("latest", False),
        ("", False),
    ],
)
def test_is_valid(v, valid):
    assert version.is_valid(v) is valid


@pytest.mark.parametrize(
    "v,kind",
    [
        ("v1.0.0", VersionKind.RELEASE),
        ("v2.3.4+incompatible", VersionKind.RELEASE),
        ("v1.0.0-beta", VersionKind.PRERELEASE),
        ("v0.0.0-20190101000000-abcdefabcdef", VersionKind.PSEUDO),
        ("v1.2.4-0.20190101000000-abcdefabcdef", VersionKind.PSEUDO),
        ("v1.2.3-pre.0.20190101000000-abcdefabcdef", VersionKind.PSEUDO),
    ],
)
def test_kind(v, kind):
    assert version.kind(v) == kind


def test_kind_invalid():
    with pytest.raises(ValueError):
        version.kind("master")


def test_major():
    assert version.major("v2.1.0") == "v2"
    assert version.major("nope") == ""


class TestCompare:
    """Test semantic version precedence."""

    def test_ordering(self):
        ordered = [
            "v0.9.0",
            "v1.0.0-alpha",
            "v1.0.0-alpha.1",
            "v1.0.0-beta",
            "v1.0.0-beta.2",
            "v1.0.0-beta.11",
            "v1.0.0-rc.1",
            "v1.0.0",
            "v1.0.1",
            "v1.10.0",
        ]
        for a, b in zip(ordered, ordered[1:]):
            assert version.compare(a, b) < 0
            assert version.compare(b, a) > 0

    def test_build_metadata_ignored(self):
        assert version.compare("v1.0.0+meta", "v1.0.0") == 0

    def test_invalid_sorts_first(self):
        assert version.compare("bad", "v0.0.1") < 0
        assert version.compare("bad", "worse") == 0
