"""Base interface for persistence backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from pkgindex.models import (
    License,
    ModuleVersion,
    Package,
    PackageVersionState,
    VersionState,
)


@dataclass(frozen=True)
class SearchDocument:
    """The search-facing row of a package: its latest stored version."""

    package_path: str
    module_path: str
    version: str
    synopsis: str


class Persistence(ABC):
    """Abstract storage for the ingestion pipeline.

    All methods are coroutines so that implementations backed by blocking
    drivers can move the work off the event loop.
    """

    @abstractmethod
    async def upsert_version_state(
        self,
        module_path: str,
        version: str,
        status: int,
        error: str = "",
        go_mod_path: Optional[str] = None,
        package_states: Optional[list[PackageVersionState]] = None,
    ) -> None:
        """Record the outcome of a fetch attempt.

        Creates the state on the first attempt. Later attempts overwrite
        status, error, go.mod path and package states, increment the try
        count and push next_processed_after back exponentially.
        """
        ...

    @abstractmethod
    async def insert_module_version(
        self,
        module: ModuleVersion,
        packages: list[Package],
        licenses: list[License],
    ) -> None:
        """Store a module version, replacing anything stored for it before.

        Raises:
            DBModuleInsertInvalid: If the data is inconsistent.
        """
        ...

    @abstractmethod
    async def delete_module_version(self, module_path: str, version: str) -> None:
        """Delete the stored data of a module version, if any.

        The version state is kept.
        """
        ...

    @abstractmethod
    async def get_next_versions_to_fetch(self, limit: int) -> list[VersionState]:
        """Return up to limit versions that are due for a (re)fetch.

        Never-processed versions come first, then retryable failures.
        """
        ...

    @abstractmethod
    async def insert_index_versions(self, versions: list[tuple[str, str]]) -> int:
        """Record (module_path, version) pairs as never processed.

        Pairs that already have a state are left alone.

        Returns:
            Number of new states.
        """
        ...

    @abstractmethod
    async def record_alternative_module_path(self, alternative: str, canonical: str) -> None:
        """Record that alternative is not the canonical path of its module."""
        ...

    @abstractmethod
    async def get_canonical_module_path(self, alternative: str) -> Optional[str]:
        ...

    @abstractmethod
    async def delete_older_versions_from_search(self, module_path: str, version: str) -> int:
        """Delete search rows of module_path older than version.

        Returns:
            Number of deleted rows.
        """
        ...

    @abstractmethod
    async def get_search_documents(self, module_path: str) -> list[SearchDocument]:
        ...

    @abstractmethod
    async def get_version_state(self, module_path: str, version: str) -> Optional[VersionState]:
        ...

    @abstractmethod
    async def get_module_version(self, module_path: str, version: str) -> Optional[ModuleVersion]:
        ...

    @abstractmethod
    async def get_packages(self, module_path: str, version: str) -> list[Package]:
        """Return the stored packages, ordered by path and build context."""
        ...

    @abstractmethod
    async def get_licenses(self, module_path: str, version: str) -> list[License]:
        """Return the stored licenses, ordered by file path."""
        ...
