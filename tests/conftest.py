"""Pytest configuration and fixtures."""

import io
import zipfile
from importlib.resources import files
from typing import Callable, Optional, Union

import pytest

from pkgindex.archive import ArchiveReader
from pkgindex.persistence import SqlitePersistence

MODULE_PATH = "github.com/my/module"
VERSION = "v1.0.0"

MIT_LICENSE = (
    "Copyright (c) 2019 The Module Authors\n\n"
    + files("pkgindex.licensetexts").joinpath("MIT.txt").read_text(encoding="utf-8")
)

Contents = Union[str, bytes]


def build_zip(
    module_path: str,
    version: str,
    contents: dict[str, Contents],
    extra: Optional[dict[str, Contents]] = None,
) -> bytes:
    """Build a module zip in memory.

    Args:
        module_path: Module path.
        version: Version.
        contents: Files, by path relative to the module root.
        extra: Entries added with their names as given, outside the
            module directory.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for path, data in contents.items():
            zf.writestr(f"{module_path}@{version}/{path}", data)
        for name, data in (extra or {}).items():
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture
def make_zip() -> Callable[..., bytes]:
    """Return the in-memory zip builder."""
    return build_zip


@pytest.fixture
def make_archive() -> Callable[..., ArchiveReader]:
    """Return a builder of ArchiveReaders over in-memory zips."""

    def _make(
        contents: dict[str, Contents],
        module_path: str = MODULE_PATH,
        version: str = VERSION,
        extra: Optional[dict[str, Contents]] = None,
    ) -> ArchiveReader:
        data = build_zip(module_path, version, contents, extra)
        return ArchiveReader.from_bytes(data, module_path, version)

    return _make


@pytest.fixture
def basic_module() -> dict[str, str]:
    """A small module with a root package, a subpackage and an MIT license."""
    return {
        "go.mod": f"module {MODULE_PATH}\n\ngo 1.21\n",
        "LICENSE": MIT_LICENSE,
        "README.md": "# module\n\nThis is a readme.\n",
        "foo.go": (
            "// Package foo returns the string foo.\n"
            "package foo\n\n"
            'import "fmt"\n\n'
            "// Foo returns foo.\n"
            "func Foo() string { return fmt.Sprint(\"foo\") }\n"
        ),
        "bar/bar.go": (
            "// Package bar returns the string bar.\n"
            "package bar\n\n"
            "// Bar returns bar.\n"
            "func Bar() string { return \"bar\" }\n"
        ),
    }


@pytest.fixture
def store(tmp_path) -> SqlitePersistence:
    """Create a SqlitePersistence with temporary storage."""
    return SqlitePersistence(db_path=tmp_path / "pkgindex.db")
