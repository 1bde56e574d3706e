"""Reading module zips.

A module zip holds every file of a module version under the directory
``<module>@<version>/``. ArchiveReader wraps a :class:`zipfile.ZipFile`
and exposes entries by their path relative to that directory.
"""

import io
import zipfile
import zlib
from dataclasses import dataclass
from typing import Iterator, Optional

from pkgindex.errors import BadModule


def module_version_dir(module_path: str, version: str) -> str:
    """Return the directory that holds a module's files in its zip."""
    return f"{module_path}@{version}"


@dataclass(frozen=True)
class ArchiveEntry:
    """A file in the module zip.

    Attributes:
        name: Full name of the entry in the zip.
        path: Path relative to the module root, or None if the entry lies
            outside the module directory.
        size: Uncompressed size in bytes.
        is_dir: True for directory entries.
    """

    name: str
    path: Optional[str]
    size: int
    is_dir: bool


class ArchiveReader:
    """Read-only view of a module zip.

    Attributes:
        module_path: Module path the zip belongs to.
        version: Resolved version the zip belongs to.
        prefix: "<module>@<version>/" prefix every entry must have.
    """

    def __init__(self, zf: zipfile.ZipFile, module_path: str, version: str) -> None:
        """Initialize the reader.

        Args:
            zf: Open zip file.
            module_path: Module path.
            version: Resolved version.
        """
        self._zf = zf
        self.module_path = module_path
        self.version = version
        self.prefix = module_version_dir(module_path, version) + "/"

    @classmethod
    def from_bytes(cls, data: bytes, module_path: str, version: str) -> "ArchiveReader":
        """Open a zip held in memory.

        Raises:
            BadModule: If data is not a readable zip.
        """
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, ValueError) as e:
            raise BadModule(f"module zip is malformed: {e}") from e
        return cls(zf, module_path, version)

    def entries(self) -> Iterator[ArchiveEntry]:
        """Yield every entry of the zip, in zip order."""
        for info in self._zf.infolist():
            path = None
            if info.filename.startswith(self.prefix):
                path = info.filename[len(self.prefix):]
            yield ArchiveEntry(
                name=info.filename,
                path=path,
                size=info.file_size,
                is_dir=info.is_dir(),
            )

    def contains(self, path: str) -> bool:
        """Report whether the module contains a file at path."""
        try:
            self._zf.getinfo(self.prefix + path)
        except KeyError:
            return False
        return True

    def read(self, entry: ArchiveEntry, limit: int) -> bytes:
        """Return the contents of entry, reading at most limit bytes.

        Raises:
            BadModule: If the entry cannot be decompressed.
        """
        try:
            with self._zf.open(entry.name) as f:
                return f.read(limit)
        except (zipfile.BadZipFile, zlib.error, OSError, RuntimeError) as e:
            raise BadModule(f"reading {entry.name!r}: {e}") from e

    def read_path(self, path: str, limit: int) -> Optional[bytes]:
        """Return the contents of the file at path, or None if absent."""
        name = self.prefix + path
        try:
            info = self._zf.getinfo(name)
        except KeyError:
            return None
        return self.read(
            ArchiveEntry(name=name, path=path, size=info.file_size, is_dir=info.is_dir()),
            limit,
        )

    def close(self) -> None:
        self._zf.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
