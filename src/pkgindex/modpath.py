"""Validation and manipulation of module and import paths."""

import posixpath
import re
from typing import Optional

from pkgindex.errors import InvalidArgument

# Module path of the Go standard library. Packages of this module use
# their bare directory as import path.
STDLIB_MODULE_PATH = "std"

_MAJOR_SUFFIX_RE = re.compile(r"^(?P<prefix>.*)/(?P<major>v[0-9]+)$")
_GOPKGIN_RE = re.compile(r"^(?P<prefix>gopkg\.in/.*)\.(?P<major>v[0-9]+(?:-unstable)?)$")

# Windows reserved names may not appear as path elements, with or
# without an extension.
_RESERVED_NAMES = frozenset(
    ["con", "prn", "aux", "nul"]
    + [f"com{i}" for i in range(1, 10)]
    + [f"lpt{i}" for i in range(1, 10)]
)

_MODULE_ELEM_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-._~"
)
_IMPORT_ELEM_CHARS = _MODULE_ELEM_CHARS | {"+"}
_FIRST_ELEM_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789-.")


def _check_elem(elem: str, allowed: frozenset, is_module: bool) -> None:
    if not elem:
        raise InvalidArgument("empty path element")
    if elem in (".", ".."):
        raise InvalidArgument(f"invalid path element {elem!r}")
    bad = [c for c in elem if c not in allowed]
    if bad:
        raise InvalidArgument(f"invalid char {bad[0]!r}")
    if is_module and elem.startswith("."):
        raise InvalidArgument("leading dot in path element")
    if elem.endswith("."):
        raise InvalidArgument("trailing dot in path element")
    short = elem.split(".", 1)[0]
    if short.lower() in _RESERVED_NAMES:
        raise InvalidArgument(f"{short!r} disallowed as path element component on Windows")
    tilde = short.rfind("~")
    if tilde >= 0 and tilde < len(short) - 1 and short[tilde + 1 :].isdigit():
        raise InvalidArgument("trailing tilde and digits in path element")


def _check_path(path: str, allowed: frozenset, is_module: bool) -> None:
    if not path:
        raise InvalidArgument("empty string")
    if path.startswith("-"):
        raise InvalidArgument("leading dash")
    if "//" in path:
        raise InvalidArgument("double slash")
    if path.endswith("/"):
        raise InvalidArgument("trailing slash")
    if path.startswith("/"):
        raise InvalidArgument("leading slash")
    for elem in path.split("/"):
        _check_elem(elem, allowed, is_module)


def check_module_path(path: str) -> None:
    """Check that path is a valid module path.

    Raises:
        InvalidArgument: If the path is malformed.
    """
    if path == STDLIB_MODULE_PATH:
        return
    try:
        _check_path(path, _MODULE_ELEM_CHARS, is_module=True)
        first = path.split("/", 1)[0]
        if "." not in first:
            raise InvalidArgument("missing dot in first path element")
        if first.startswith("-"):
            raise InvalidArgument("leading dash in first path element")
        bad = [c for c in first if c not in _FIRST_ELEM_CHARS]
        if bad:
            raise InvalidArgument(f"invalid char {bad[0]!r} in first path element")
        m = _MAJOR_SUFFIX_RE.match(path)
        if m is not None and not path.startswith("gopkg.in/"):
            major = m.group("major")
            if major in ("v0", "v1") or major.startswith("v0"):
                raise InvalidArgument(f"invalid major version suffix /{major}")
    except InvalidArgument as e:
        raise InvalidArgument(f"malformed module path {path!r}: {e}") from None


def check_import_path(path: str) -> None:
    """Check that path is a valid package import path.

    Raises:
        InvalidArgument: If the path is malformed.
    """
    try:
        _check_path(path, _IMPORT_ELEM_CHARS, is_module=False)
    except InvalidArgument as e:
        raise InvalidArgument(f"malformed import path {path!r}: {e}") from None


def escape_path(path: str) -> str:
    """Escape a module path for use in proxy URLs.

    Upper-case letters are replaced by "!" followed by the lower-case
    letter, so that paths survive case-insensitive file systems.

    Raises:
        InvalidArgument: If the path contains "!".
    """
    if "!" in path:
        raise InvalidArgument(f"invalid char '!' in {path!r}")
    return "".join("!" + c.lower() if "A" <= c <= "Z" else c for c in path)


def escape_version(version: str) -> str:
    """Escape a version for use in proxy URLs, like escape_path."""
    return escape_path(version)


def package_path(module_path: str, inner_path: str) -> str:
    """Return the import path of directory inner_path of the module.

    inner_path is relative to the module root; "." is the root itself.
    """
    if module_path == STDLIB_MODULE_PATH:
        return inner_path
    if inner_path in ("", "."):
        return module_path
    return posixpath.join(module_path, inner_path)


def series_path(module_path: str) -> str:
    """Return the module path with any major version suffix removed."""
    m = _GOPKGIN_RE.match(module_path)
    if m is not None:
        return m.group("prefix")
    m = _MAJOR_SUFFIX_RE.match(module_path)
    if m is not None and m.group("major") not in ("v0", "v1"):
        return m.group("prefix")
    return module_path


def v1_path(pkg_path: str, module_path: str) -> str:
    """Return the path of the package in the v1 module of its series."""
    if module_path == STDLIB_MODULE_PATH:
        return pkg_path
    suffix = suffix_of(pkg_path, module_path)
    if not suffix:
        return series_path(module_path)
    return posixpath.join(series_path(module_path), suffix)


def suffix_of(full_path: str, module_path: str) -> str:
    """Return the directory of full_path relative to module_path, or ""."""
    if module_path == STDLIB_MODULE_PATH:
        return full_path
    if full_path == module_path:
        return ""
    return full_path[len(module_path) + 1 :]


def ignored_by_go_tool(import_path: str) -> bool:
    """Report whether the go tool ignores the directory import_path.

    Directory and file names that begin with "." or "_" are ignored by
    the go tool, as are directories named "testdata".
    """
    for elem in import_path.split("/"):
        if elem.startswith(".") or elem.startswith("_") or elem == "testdata":
            return True
    return False


def is_vendored(import_path: str) -> bool:
    """Report whether import_path lies inside a vendor directory."""
    return import_path.startswith("vendor/") or "/vendor/" in import_path


def parse_go_mod_module(contents: bytes) -> Optional[str]:
    """Return the module path declared by a go.mod file, or None.

    Only the module directive is inspected. Quoted and unquoted forms are
    accepted, and comments are ignored.
    """
    text = contents.decode("utf-8", errors="replace")
    for line in text.splitlines():
        line = line.split("//", 1)[0].strip()
        if not line.startswith("module"):
            continue
        rest = line[len("module"):]
        if rest and not rest[0].isspace() and rest[0] != '"':
            continue
        rest = rest.strip()
        if rest.startswith('"') and rest.endswith('"') and len(rest) >= 2:
            rest = rest[1:-1]
        elif rest.startswith("`") and rest.endswith("`") and len(rest) >= 2:
            rest = rest[1:-1]
        return rest or None
    return None
