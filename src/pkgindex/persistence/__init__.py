"""Storage of fetched module versions and their fetch state.

The orchestrator talks to storage only through :class:`Persistence`;
:class:`SqlitePersistence` is the implementation used by the CLI.
"""

from pkgindex.persistence.base import Persistence, SearchDocument
from pkgindex.persistence.sqlite import SqlitePersistence

__all__ = [
    "Persistence",
    "SearchDocument",
    "SqlitePersistence",
]
