"""Semantic versions as used by Go modules.

Go module versions are semantic versions with a leading "v"
(v1.2.3, v1.2.3-pre.1, v1.2.3+meta). A version's kind (release,
prerelease or pseudo-version) is a pure function of the string.
"""

import re
from enum import Enum
from typing import Optional

LATEST = "latest"

_SEMVER_RE = re.compile(
    r"^v(?P<major>0|[1-9][0-9]*)"
    r"(?:\.(?P<minor>0|[1-9][0-9]*)"
    r"(?:\.(?P<patch>0|[1-9][0-9]*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?)?)?$"
)

# vX.0.0-yyyymmddhhmmss-abcdefabcdef, vX.Y.Z-pre.0.yyyymmddhhmmss-abcdefabcdef
# and vX.Y.(Z+1)-0.yyyymmddhhmmss-abcdefabcdef.
_PSEUDO_RE = re.compile(
    r"^v[0-9]+\.(0\.0-|\d+\.\d+-([^+]*\.)?0\.)\d{14}-[A-Za-z0-9]+(\+[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*)?$"
)


class VersionKind(str, Enum):
    """Kind of a module version, derived from its shape."""

    RELEASE = "release"
    PRERELEASE = "prerelease"
    PSEUDO = "pseudo"


def is_valid(v: str) -> bool:
    """Report whether v is a valid Go semantic version.

    Shorthands like "v1" and "v1.2" are accepted, as in Go's semver
    package, but leading zeros in numeric identifiers are not.
    """
    m = _SEMVER_RE.match(v)
    if m is None:
        return False
    prerelease = m.group("prerelease")
    if prerelease:
        for ident in prerelease.split("."):
            if ident.isdigit() and len(ident) > 1 and ident.startswith("0"):
                return False
    return True


def is_pseudo(v: str) -> bool:
    """Report whether v is a pseudo-version."""
    return v.count("-") >= 2 and is_valid(v) and _PSEUDO_RE.match(v) is not None


def prerelease(v: str) -> str:
    """Return the prerelease suffix of v including the "-", or ""."""
    m = _SEMVER_RE.match(v)
    if m is None or not m.group("prerelease"):
        return ""
    return "-" + m.group("prerelease")


def kind(v: str) -> VersionKind:
    """Return the kind of the valid semantic version v.

    Raises:
        ValueError: If v is not a valid semantic version.
    """
    if not is_valid(v):
        raise ValueError(f"invalid semantic version {v!r}")
    if is_pseudo(v):
        return VersionKind.PSEUDO
    if prerelease(v):
        return VersionKind.PRERELEASE
    return VersionKind.RELEASE


def major(v: str) -> str:
    """Return the major version prefix of v, e.g. "v2" for "v2.1.0"."""
    m = _SEMVER_RE.match(v)
    if m is None:
        return ""
    return "v" + m.group("major")


def _parts(v: str) -> tuple[tuple[int, int, int], Optional[list[str]]]:
    m = _SEMVER_RE.match(v)
    if m is None:
        raise ValueError(f"invalid semantic version {v!r}")
    nums = (int(m.group("major")), int(m.group("minor") or 0), int(m.group("patch") or 0))
    pre = m.group("prerelease")
    return nums, (pre.split(".") if pre else None)


def _compare_prerelease(a: list[str], b: list[str]) -> int:
    for x, y in zip(a, b):
        if x == y:
            continue
        x_num, y_num = x.isdigit(), y.isdigit()
        if x_num and y_num:
            return -1 if int(x) < int(y) else 1
        if x_num != y_num:
            # Numeric identifiers have lower precedence.
            return -1 if x_num else 1
        return -1 if x < y else 1
    return (len(a) > len(b)) - (len(a) < len(b))


def compare(v: str, w: str) -> int:
    """Compare two valid semantic versions.

    Build metadata is ignored. Invalid versions sort before valid ones,
    and compare equal to each other.

    Returns:
        A negative number, zero or a positive number.
    """
    v_ok, w_ok = is_valid(v), is_valid(w)
    if not v_ok or not w_ok:
        return (v_ok > w_ok) - (v_ok < w_ok)
    v_nums, v_pre = _parts(v)
    w_nums, w_pre = _parts(w)
    if v_nums != w_nums:
        return -1 if v_nums < w_nums else 1
    if v_pre is None or w_pre is None:
        # A release is greater than any of its prereleases.
        return (v_pre is None) - (w_pre is None)
    return _compare_prerelease(v_pre, w_pre)
