"""Core data models for pkgindex.

This module defines the fundamental data structures used throughout the
ingestion pipeline: module versions and their packages, build contexts,
license metadata, and the durable per-version fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from pkgindex.version import VersionKind

# ALL stands for every value of a build context element (GOOS or GOARCH).
ALL = "all"


@dataclass(frozen=True)
class BuildContext:
    """A (GOOS, GOARCH) pair that selects the files of a package.

    Attributes:
        goos: Target operating system (e.g., "linux").
        goarch: Target architecture (e.g., "amd64").
    """

    goos: str
    goarch: str

    def __str__(self) -> str:
        return f"{self.goos}/{self.goarch}"


BUILD_CONTEXT_ALL = BuildContext(ALL, ALL)
BUILD_CONTEXT_LINUX = BuildContext("linux", "amd64")
BUILD_CONTEXT_WINDOWS = BuildContext("windows", "amd64")
BUILD_CONTEXT_DARWIN = BuildContext("darwin", "amd64")
BUILD_CONTEXT_JS = BuildContext("js", "wasm")

# The build contexts a package is loaded under, in order of preference.
# The first one determines which documentation is shown by default.
BUILD_CONTEXTS: tuple[BuildContext, ...] = (
    BUILD_CONTEXT_LINUX,
    BUILD_CONTEXT_WINDOWS,
    BUILD_CONTEXT_DARWIN,
    BUILD_CONTEXT_JS,
)


def compare_build_contexts(c1: BuildContext, c2: BuildContext) -> int:
    """Compare two build contexts by their position in BUILD_CONTEXTS.

    Contexts outside the fixed set sort last.

    Returns:
        A negative number, zero or a positive number.

    Raises:
        ValueError: If either context is BUILD_CONTEXT_ALL or has an "all" element.
    """
    if c1 == c2:
        return 0
    if ALL in (c1.goos, c1.goarch, c2.goos, c2.goarch):
        raise ValueError("cannot compare a build context with 'all'")

    def pos(c: BuildContext) -> int:
        try:
            return BUILD_CONTEXTS.index(c)
        except ValueError:
            return len(BUILD_CONTEXTS)

    return pos(c1) - pos(c2)


@dataclass(frozen=True)
class LicenseMetadata:
    """Information extracted from a license file.

    Attributes:
        file_path: '/'-separated path of the license file relative to the
            module root (e.g., "LICENSE" or "foo/COPYING").
        types: License type identifiers, sorted. Empty when the file could
            not be classified.
        coverage: Percentage of the file covered by recognized license text.
    """

    file_path: str
    types: tuple[str, ...] = ()
    coverage: float = 0.0


@dataclass(frozen=True)
class License:
    """A classified license file and its contents."""

    metadata: LicenseMetadata
    contents: bytes = b""

    @property
    def file_path(self) -> str:
        return self.metadata.file_path

    @property
    def types(self) -> tuple[str, ...]:
        return self.metadata.types


@dataclass(frozen=True)
class Readme:
    """A README file found in the module zip."""

    file_path: str
    contents: str


@dataclass
class Package:
    """A Go package loaded under one build context.

    Attributes:
        path: Import path (e.g., "github.com/my/module/foo").
        name: Package name from the package clause.
        synopsis: First sentence of the package documentation.
        documentation_html: Rendered documentation.
        imports: Sorted import paths of the non-test files.
        goos: GOOS of the build context, or "all".
        goarch: GOARCH of the build context, or "all".
        v1_path: Path of the package in the v1 module of its series.
        licenses: Metadata of the licenses that apply to the package.
        is_redistributable: True if the licenses allow redistribution.
    """

    path: str
    name: str
    synopsis: str
    documentation_html: str
    imports: list[str] = field(default_factory=list)
    goos: str = ALL
    goarch: str = ALL
    v1_path: str = ""
    licenses: list[LicenseMetadata] = field(default_factory=list)
    is_redistributable: bool = False

    @property
    def build_context(self) -> BuildContext:
        return BuildContext(self.goos, self.goarch)


def documentation_for_build_context(
    packages: list[Package], bc: BuildContext
) -> Optional[Package]:
    """Return the first package whose build context matches bc.

    An "all" element of a package matches anything, and an empty element
    of bc acts as a wildcard, so BuildContext("", "") selects the first
    package.
    """
    for p in packages:
        if (bc.goos == "" or p.goos == ALL or bc.goos == p.goos) and (
            bc.goarch == "" or p.goarch == ALL or bc.goarch == p.goarch
        ):
            return p
    return None


@dataclass(frozen=True)
class ModuleVersion:
    """A successfully fetched module version.

    Attributes:
        module_path: Module path (e.g., "github.com/my/module").
        version: Resolved semantic version.
        commit_time: Commit time reported by the proxy.
        version_type: Kind of version, derived from the version string.
        readme_file_path: Path of the root README, if any.
        readme_contents: Contents of the root README, if any.
        repository_url: Source repository URL, if it can be inferred.
        has_go_mod: True if the zip contains a go.mod file at the root.
        is_redistributable: True if the root licenses allow redistribution.
    """

    module_path: str
    version: str
    commit_time: datetime
    version_type: VersionKind
    readme_file_path: Optional[str] = None
    readme_contents: Optional[str] = None
    repository_url: Optional[str] = None
    has_go_mod: bool = False
    is_redistributable: bool = False


@dataclass(frozen=True)
class PackageVersionState:
    """Outcome of processing one directory of a module version."""

    package_path: str
    status: int
    error: str = ""


@dataclass
class VersionState:
    """Durable record of the latest attempt to fetch a module version.

    Attributes:
        module_path: Module path.
        version: Resolved version.
        status: Status code of the latest attempt.
        try_count: Number of attempts so far.
        created_at: When the first attempt was recorded.
        last_processed_at: When the latest attempt was recorded.
        next_processed_after: Earliest time the version may be retried.
        error: Error text of the latest attempt, if any.
        go_mod_path: Module path declared by go.mod, if known.
        package_states: Per-directory outcomes of the latest attempt.
    """

    module_path: str
    version: str
    status: int
    try_count: int
    created_at: datetime
    last_processed_at: Optional[datetime]
    next_processed_after: datetime
    error: str = ""
    go_mod_path: Optional[str] = None
    package_states: list[PackageVersionState] = field(default_factory=list)


@dataclass(frozen=True)
class WorkItem:
    """A module version scheduled for fetching.

    Attributes:
        module_path: Module path.
        version: Version to fetch.
        suffix: Appended to the task name to force reprocessing of a
            version that would otherwise be de-duplicated.
    """

    module_path: str
    version: str
    suffix: str = ""

    @property
    def task_name(self) -> str:
        name = f"{self.module_path}@{self.version}"
        if self.suffix:
            name += f"-{self.suffix}"
        return name


@dataclass
class FetchResult:
    """Everything learned from one fetch of a module version.

    Attributes:
        module_path: Requested module path.
        requested_version: Version as requested (may be "latest").
        resolved_version: Version reported by the proxy.
        status: Final status code.
        error: Error that ended the fetch, if any.
        go_mod_path: Module path declared by go.mod.
        module: The module version, when it was processed.
        packages: Packages extracted from the module.
        licenses: Every license detected in the module.
        package_states: Per-directory outcomes.
    """

    module_path: str
    requested_version: str
    resolved_version: str = ""
    status: int = 0
    error: Optional[Exception] = None
    go_mod_path: Optional[str] = None
    module: Optional[ModuleVersion] = None
    packages: list[Package] = field(default_factory=list)
    licenses: list[License] = field(default_factory=list)
    package_states: list[PackageVersionState] = field(default_factory=list)
