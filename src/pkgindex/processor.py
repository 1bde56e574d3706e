"""Extraction of packages from a module zip.

Processing happens in two phases. The first looks at zip metadata only:
it validates the layout, groups .go files by directory and enforces the
size ceilings. Only when the whole zip passed the first phase are file
contents read, and every directory is loaded under each build context.

A directory that cannot be turned into a package marks the module
incomplete but does not stop the other directories from being processed.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Optional

from pkgindex import modpath
from pkgindex.archive import ArchiveEntry, ArchiveReader
from pkgindex.config import Limits
from pkgindex.errors import (
    STATUS_OK,
    BadModule,
    IngestError,
    InternalError,
    InvalidArgument,
    ModuleTooLarge,
    PackageBadImportPath,
    PackageBuildContextNotSupported,
    PackageDocumentationHTMLTooLarge,
    PackageInvalidContents,
    PackageMaxFileSizeLimitExceeded,
)
from pkgindex.licenses import LicenseMatcher, redistributable
from pkgindex.loader import BadPackageError, LoadedPackage, load_package_with_build_context
from pkgindex.models import ALL, BUILD_CONTEXTS, Package, PackageVersionState, Readme

logger = logging.getLogger(__name__)


@dataclass
class PackageExtraction:
    """Packages and per-directory outcomes of one module zip.

    Attributes:
        packages: Packages in directory order; a directory contributes one
            package per build context it yields, or a single "all/all"
            package when every context yields the same content.
        package_states: One state per directory with .go files.
        incomplete: True if any directory could not be fully processed.
    """

    packages: list[Package] = field(default_factory=list)
    package_states: list[PackageVersionState] = field(default_factory=list)

    @property
    def incomplete(self) -> bool:
        return any(s.status != STATUS_OK for s in self.package_states)


def _same_content(a: Package, b: Package) -> bool:
    return (
        a.name == b.name
        and a.synopsis == b.synopsis
        and a.documentation_html == b.documentation_html
        and a.imports == b.imports
    )


def _collapse(loaded: list[LoadedPackage]) -> list[Package]:
    """Merge per-context packages into one "all/all" package if they agree."""
    packages = [lp.package for lp in loaded]
    if len(packages) == len(BUILD_CONTEXTS) and all(
        _same_content(packages[0], p) for p in packages[1:]
    ):
        first = packages[0]
        first.goos = ALL
        first.goarch = ALL
        return [first]
    return packages


def _phase_one(
    archive: ArchiveReader,
    module_path: str,
    limits: Limits,
    states: list[PackageVersionState],
) -> dict[str, list[ArchiveEntry]]:
    dirs: dict[str, list[ArchiveEntry]] = {}
    incomplete: set[str] = set()
    for entry in archive.entries():
        if entry.is_dir:
            raise BadModule(f"module zip contains directory entry {entry.name!r}")
        if entry.path is None:
            raise BadModule(
                f"expected file to have prefix {archive.prefix!r}; got {entry.name!r}"
            )
        inner_path = posixpath.dirname(entry.path) or "."
        if inner_path in incomplete:
            continue
        import_path = modpath.package_path(module_path, inner_path)
        if modpath.ignored_by_go_tool(import_path) or modpath.is_vendored(import_path):
            continue
        if not entry.path.endswith(".go"):
            continue
        try:
            modpath.check_import_path(import_path)
        except InvalidArgument as e:
            incomplete.add(inner_path)
            dirs.pop(inner_path, None)
            states.append(
                PackageVersionState(import_path, PackageBadImportPath.status, str(e))
            )
            continue
        if entry.size > limits.max_file_size:
            incomplete.add(inner_path)
            dirs.pop(inner_path, None)
            msg = (
                f"Unable to process {entry.name}: file size {entry.size} "
                f"exceeds max limit {limits.max_file_size}"
            )
            logger.warning("%s: %s", import_path, msg)
            states.append(
                PackageVersionState(import_path, PackageMaxFileSizeLimitExceeded.status, msg)
            )
            continue
        dirs.setdefault(inner_path, []).append(entry)
        if len(dirs) > limits.max_packages_per_module:
            raise ModuleTooLarge(
                f"{len(dirs)} packages found in {module_path!r}; "
                f"exceeds limit {limits.max_packages_per_module} for packages per module"
            )
    return dirs


def _load_directory(
    archive: ArchiveReader,
    module_path: str,
    inner_path: str,
    entries: list[ArchiveEntry],
    matcher: Optional[LicenseMatcher],
    limits: Limits,
) -> tuple[list[Package], PackageVersionState]:
    import_path = modpath.package_path(module_path, inner_path)
    files = {posixpath.basename(e.path): archive.read(e, limits.max_file_size) for e in entries}

    loaded: list[LoadedPackage] = []
    for bc in BUILD_CONTEXTS:
        try:
            lp = load_package_with_build_context(module_path, inner_path, files, bc, limits)
        except BadPackageError as e:
            logger.warning("%s: bad package: %s", import_path, e)
            return [], PackageVersionState(import_path, PackageInvalidContents.status, str(e))
        if lp is not None:
            loaded.append(lp)

    if not loaded:
        logger.info("%s: no build context matches its files", import_path)
        return [], PackageVersionState(
            import_path,
            PackageBuildContextNotSupported.status,
            "no supported build context matches the package's files",
        )

    packages = _collapse(loaded)
    if matcher is not None:
        lics = matcher.match(inner_path)
        is_redist = redistributable(lics)
        for p in packages:
            p.licenses = list(lics)
            p.is_redistributable = is_redist

    doc_errors = [lp.doc_error for lp in loaded if lp.doc_error is not None]
    if doc_errors:
        return packages, PackageVersionState(
            import_path, PackageDocumentationHTMLTooLarge.status, str(doc_errors[0])
        )
    return packages, PackageVersionState(import_path, STATUS_OK)


def extract_packages(
    archive: ArchiveReader,
    module_path: str,
    version: str,
    matcher: Optional[LicenseMatcher] = None,
    limits: Optional[Limits] = None,
) -> PackageExtraction:
    """Extract every package of a module zip.

    Args:
        archive: The module zip.
        module_path: Module path.
        version: Resolved version.
        matcher: Licenses of the module; packages get no licenses if None.
        limits: Processing ceilings.

    Returns:
        The packages and per-directory states.

    Raises:
        BadModule: If the zip layout is invalid or no package was found.
        ModuleTooLarge: If the package or import ceilings are exceeded.
        InternalError: If processing failed unexpectedly.
    """
    limits = limits or Limits()
    try:
        result = PackageExtraction()
        dirs = _phase_one(archive, module_path, limits, result.package_states)
        for inner_path in sorted(dirs):
            packages, state = _load_directory(
                archive, module_path, inner_path, dirs[inner_path], matcher, limits
            )
            result.packages.extend(packages)
            result.package_states.append(state)
    except IngestError:
        raise
    except Exception as e:
        logger.exception("Unexpected error processing %s@%s", module_path, version)
        raise InternalError(f"internal error processing {module_path}@{version}: {e!r}") from e
    if not result.packages:
        raise BadModule(f"{module_path}@{version} contains no packages")
    return result


def is_readme(file_path: str) -> bool:
    """Report whether the base name of file_path, without extension, is README."""
    name = posixpath.basename(file_path)
    stem = posixpath.splitext(name)[0]
    return stem.lower() == "readme"


def extract_readme(archive: ArchiveReader, limits: Optional[Limits] = None) -> Optional[Readme]:
    """Return the README at the module root, if any.

    When several files qualify, README.md is preferred, then the first
    name in sorted order.
    """
    limits = limits or Limits()
    candidates = sorted(
        (e for e in archive.entries() if e.path and "/" not in e.path and is_readme(e.path)),
        key=lambda e: (e.path.lower() != "readme.md", e.path),
    )
    if not candidates:
        return None
    entry = candidates[0]
    contents = archive.read(entry, limits.max_readme_size)
    return Readme(file_path=entry.path, contents=contents.decode("utf-8", errors="replace"))
