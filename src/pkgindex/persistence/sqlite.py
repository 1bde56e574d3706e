"""SQLite-based persistence.

Each public coroutine runs its blocking counterpart in a worker thread
with :func:`asyncio.to_thread`, so the event loop keeps serving other
fetches while SQLite works. Lists and tuples are stored as JSON.
"""

import asyncio
import contextlib
import json
import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Optional

from pkgindex import modpath
from pkgindex import version as semver
from pkgindex.config import DEFAULT_DB_PATH
from pkgindex.errors import DBModuleInsertInvalid
from pkgindex.models import (
    License,
    LicenseMetadata,
    ModuleVersion,
    Package,
    PackageVersionState,
    VersionState,
)
from pkgindex.persistence.base import Persistence, SearchDocument
from pkgindex.version import VersionKind

logger = logging.getLogger(__name__)

# Status of a version that has been recorded but never fetched.
STATUS_NEVER_PROCESSED = 0

# Retry backoff: starts at one minute, doubles on every attempt, and
# stays at one hour once it gets there.
INITIAL_BACKOFF = timedelta(minutes=1)
MAX_BACKOFF = timedelta(hours=1)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS module_versions (
    module_path TEXT NOT NULL,
    version TEXT NOT NULL,
    commit_time TEXT NOT NULL,
    version_type TEXT NOT NULL,
    readme_file_path TEXT,
    readme_contents TEXT,
    repository_url TEXT,
    has_go_mod INTEGER NOT NULL,
    is_redistributable INTEGER NOT NULL,
    PRIMARY KEY (module_path, version)
);

CREATE TABLE IF NOT EXISTS packages (
    module_path TEXT NOT NULL,
    version TEXT NOT NULL,
    ordinal INTEGER NOT NULL,
    path TEXT NOT NULL,
    goos TEXT NOT NULL,
    goarch TEXT NOT NULL,
    name TEXT NOT NULL,
    synopsis TEXT NOT NULL,
    documentation_html TEXT NOT NULL,
    imports TEXT NOT NULL,
    v1_path TEXT NOT NULL,
    licenses TEXT NOT NULL,
    is_redistributable INTEGER NOT NULL,
    PRIMARY KEY (module_path, version, path, goos, goarch)
);

CREATE TABLE IF NOT EXISTS licenses (
    module_path TEXT NOT NULL,
    version TEXT NOT NULL,
    file_path TEXT NOT NULL,
    types TEXT NOT NULL,
    coverage REAL NOT NULL,
    contents BLOB NOT NULL,
    PRIMARY KEY (module_path, version, file_path)
);

CREATE TABLE IF NOT EXISTS version_states (
    module_path TEXT NOT NULL,
    version TEXT NOT NULL,
    status INTEGER NOT NULL,
    try_count INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    last_processed_at TEXT,
    next_processed_after TEXT NOT NULL,
    error TEXT NOT NULL,
    go_mod_path TEXT,
    PRIMARY KEY (module_path, version)
);

CREATE INDEX IF NOT EXISTS idx_version_states_next
ON version_states(next_processed_after);

CREATE TABLE IF NOT EXISTS package_version_states (
    module_path TEXT NOT NULL,
    version TEXT NOT NULL,
    package_path TEXT NOT NULL,
    status INTEGER NOT NULL,
    error TEXT NOT NULL,
    PRIMARY KEY (module_path, version, package_path)
);

CREATE TABLE IF NOT EXISTS alternative_module_paths (
    alternative TEXT PRIMARY KEY,
    canonical TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS search_documents (
    package_path TEXT PRIMARY KEY,
    module_path TEXT NOT NULL,
    version TEXT NOT NULL,
    synopsis TEXT NOT NULL
);
"""


def _now() -> datetime:
    return datetime.now(UTC)


def _next_backoff(
    now: datetime,
    last_processed_at: Optional[datetime],
    next_processed_after: datetime,
) -> datetime:
    if last_processed_at is None:
        return now + INITIAL_BACKOFF
    interval = 2 * (next_processed_after - last_processed_at)
    if interval < INITIAL_BACKOFF:
        interval = INITIAL_BACKOFF
    return now + min(interval, MAX_BACKOFF)


def _ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def validate_module_version(module: ModuleVersion, packages: list[Package]) -> None:
    """Check that a module version can be stored.

    Raises:
        DBModuleInsertInvalid: If the version is not canonical or a package
            does not belong to the module.
    """
    if not semver.is_valid(module.version):
        raise DBModuleInsertInvalid(f"invalid version {module.version!r}")
    seen: set[tuple[str, str, str]] = set()
    for p in packages:
        if module.module_path != modpath.STDLIB_MODULE_PATH and not (
            p.path == module.module_path or p.path.startswith(module.module_path + "/")
        ):
            raise DBModuleInsertInvalid(
                f"package {p.path!r} is not in module {module.module_path!r}"
            )
        key = (p.path, p.goos, p.goarch)
        if key in seen:
            raise DBModuleInsertInvalid(f"duplicate package {p.path!r} for {p.goos}/{p.goarch}")
        seen.add(key)


class SqlitePersistence(Persistence):
    """Persistence backed by a single SQLite file.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store, creating the schema if needed.

        Args:
            db_path: Path to the database. If None, uses
                ~/.cache/pkgindex/pkgindex.db.
        """
        if db_path is None:
            db_path = DEFAULT_DB_PATH
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._init_database()

    @contextlib.contextmanager
    def _connect(self):
        """Open a connection for one operation and close it afterwards."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        try:
            yield conn
        finally:
            conn.close()

    def _init_database(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # Version states.

    def _upsert_version_state(
        self,
        module_path: str,
        version: str,
        status: int,
        error: str,
        go_mod_path: Optional[str],
        package_states: list[PackageVersionState],
    ) -> None:
        now = _now()
        with self._connect() as conn:
            cursor = conn.cursor()
            try:
                # Take the write lock before reading, so concurrent upserts of
                # the same version each see the previous try count.
                cursor.execute("BEGIN IMMEDIATE")
                cursor.execute(
                    """
                    SELECT try_count, created_at, last_processed_at, next_processed_after
                    FROM version_states
                    WHERE module_path = ? AND version = ?
                    """,
                    (module_path, version),
                )
                row = cursor.fetchone()
                if row is None:
                    try_count = 1
                    created_at = now
                    next_after = now + INITIAL_BACKOFF
                else:
                    try_count = row[0] + 1
                    created_at = _ts(row[1])
                    next_after = _next_backoff(now, _ts(row[2]), _ts(row[3]))

                # Use REPLACE to handle both insert and update
                cursor.execute(
                    """
                    REPLACE INTO version_states
                    (module_path, version, status, try_count, created_at,
                     last_processed_at, next_processed_after, error, go_mod_path)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        module_path,
                        version,
                        status,
                        try_count,
                        created_at.isoformat(),
                        now.isoformat(),
                        next_after.isoformat(),
                        error,
                        go_mod_path,
                    ),
                )
                cursor.execute(
                    "DELETE FROM package_version_states WHERE module_path = ? AND version = ?",
                    (module_path, version),
                )
                cursor.executemany(
                    """
                    REPLACE INTO package_version_states
                    (module_path, version, package_path, status, error)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (module_path, version, s.package_path, s.status, s.error)
                        for s in package_states
                    ],
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise

    async def upsert_version_state(
        self,
        module_path: str,
        version: str,
        status: int,
        error: str = "",
        go_mod_path: Optional[str] = None,
        package_states: Optional[list[PackageVersionState]] = None,
    ) -> None:
        await asyncio.to_thread(
            self._upsert_version_state,
            module_path,
            version,
            status,
            error,
            go_mod_path,
            list(package_states or []),
        )

    def _row_to_state(self, conn: sqlite3.Connection, row: tuple) -> VersionState:
        module_path, version = row[0], row[1]
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT package_path, status, error
            FROM package_version_states
            WHERE module_path = ? AND version = ?
            ORDER BY package_path
            """,
            (module_path, version),
        )
        states = [PackageVersionState(*r) for r in cursor.fetchall()]
        return VersionState(
            module_path=module_path,
            version=version,
            status=row[2],
            try_count=row[3],
            created_at=_ts(row[4]),
            last_processed_at=_ts(row[5]),
            next_processed_after=_ts(row[6]),
            error=row[7],
            go_mod_path=row[8],
            package_states=states,
        )

    _STATE_COLUMNS = """
        module_path, version, status, try_count, created_at,
        last_processed_at, next_processed_after, error, go_mod_path
    """

    def _get_version_state(self, module_path: str, version: str) -> Optional[VersionState]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {self._STATE_COLUMNS}
                FROM version_states
                WHERE module_path = ? AND version = ?
                """,
                (module_path, version),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_state(conn, row)

    async def get_version_state(self, module_path: str, version: str) -> Optional[VersionState]:
        return await asyncio.to_thread(self._get_version_state, module_path, version)

    def _get_next_versions_to_fetch(self, limit: int) -> list[VersionState]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {self._STATE_COLUMNS}
                FROM version_states
                WHERE next_processed_after < ?
                  AND (status = ? OR status >= 500)
                ORDER BY status != ?, next_processed_after, module_path, version
                LIMIT ?
                """,
                (
                    _now().isoformat(),
                    STATUS_NEVER_PROCESSED,
                    STATUS_NEVER_PROCESSED,
                    limit,
                ),
            )
            rows = cursor.fetchall()
            states = [self._row_to_state(conn, row) for row in rows]
        if states:
            logger.info(
                "%d versions to fetch, from %s@%s to %s@%s",
                len(states),
                states[0].module_path,
                states[0].version,
                states[-1].module_path,
                states[-1].version,
            )
        else:
            logger.info("No versions to fetch")
        return states

    async def get_next_versions_to_fetch(self, limit: int) -> list[VersionState]:
        return await asyncio.to_thread(self._get_next_versions_to_fetch, limit)

    def _insert_index_versions(self, versions: list[tuple[str, str]]) -> int:
        now = _now().isoformat()
        with self._connect() as conn:
            cursor = conn.cursor()
            # Never-processed versions are due right away.
            cursor.executemany(
                """
                INSERT OR IGNORE INTO version_states
                (module_path, version, status, try_count, created_at,
                 last_processed_at, next_processed_after, error, go_mod_path)
                VALUES (?, ?, ?, 0, ?, NULL, ?, '', NULL)
                """,
                [(m, v, STATUS_NEVER_PROCESSED, now, now) for m, v in versions],
            )
            inserted = conn.total_changes
            conn.commit()
        return inserted

    async def insert_index_versions(self, versions: list[tuple[str, str]]) -> int:
        return await asyncio.to_thread(self._insert_index_versions, list(versions))

    # Module data.

    def _insert_module_version(
        self,
        module: ModuleVersion,
        packages: list[Package],
        licenses: list[License],
    ) -> None:
        validate_module_version(module, packages)
        key = (module.module_path, module.version)
        with self._connect() as conn:
            cursor = conn.cursor()
            try:
                self._delete_rows(cursor, *key)
                cursor.execute(
                    """
                    INSERT INTO module_versions
                    (module_path, version, commit_time, version_type,
                     readme_file_path, readme_contents, repository_url,
                     has_go_mod, is_redistributable)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        module.module_path,
                        module.version,
                        module.commit_time.isoformat(),
                        module.version_type.value,
                        module.readme_file_path,
                        module.readme_contents,
                        module.repository_url,
                        int(module.has_go_mod),
                        int(module.is_redistributable),
                    ),
                )
                cursor.executemany(
                    """
                    INSERT INTO packages
                    (module_path, version, ordinal, path, goos, goarch, name,
                     synopsis, documentation_html, imports, v1_path, licenses,
                     is_redistributable)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            *key,
                            i,
                            p.path,
                            p.goos,
                            p.goarch,
                            p.name,
                            p.synopsis,
                            p.documentation_html,
                            json.dumps(p.imports),
                            p.v1_path,
                            json.dumps(
                                [
                                    [m.file_path, list(m.types), m.coverage]
                                    for m in p.licenses
                                ]
                            ),
                            int(p.is_redistributable),
                        )
                        for i, p in enumerate(packages)
                    ],
                )
                cursor.executemany(
                    """
                    INSERT INTO licenses
                    (module_path, version, file_path, types, coverage, contents)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            *key,
                            lic.file_path,
                            json.dumps(list(lic.types)),
                            lic.metadata.coverage,
                            lic.contents,
                        )
                        for lic in licenses
                    ],
                )
                self._update_search_documents(cursor, module, packages)
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise DBModuleInsertInvalid(f"{module.module_path}@{module.version}: {e}") from e
            except sqlite3.Error:
                conn.rollback()
                raise
        logger.info(
            "Stored %s@%s with %d packages and %d licenses",
            module.module_path,
            module.version,
            len(packages),
            len(licenses),
        )

    def _update_search_documents(
        self,
        cursor: sqlite3.Cursor,
        module: ModuleVersion,
        packages: list[Package],
    ) -> None:
        synopses: dict[str, str] = {}
        for p in packages:
            synopses.setdefault(p.path, p.synopsis)
        for path, synopsis in synopses.items():
            cursor.execute(
                "SELECT version FROM search_documents WHERE package_path = ?",
                (path,),
            )
            row = cursor.fetchone()
            # A package is searchable at its newest stored version.
            if row is not None and semver.compare(row[0], module.version) > 0:
                continue
            cursor.execute(
                """
                REPLACE INTO search_documents
                (package_path, module_path, version, synopsis)
                VALUES (?, ?, ?, ?)
                """,
                (path, module.module_path, module.version, synopsis),
            )

    async def insert_module_version(
        self,
        module: ModuleVersion,
        packages: list[Package],
        licenses: list[License],
    ) -> None:
        await asyncio.to_thread(self._insert_module_version, module, packages, licenses)

    @staticmethod
    def _delete_rows(cursor: sqlite3.Cursor, module_path: str, version: str) -> None:
        for table in ("module_versions", "packages", "licenses", "search_documents"):
            cursor.execute(
                f"DELETE FROM {table} WHERE module_path = ? AND version = ?",
                (module_path, version),
            )

    def _delete_module_version(self, module_path: str, version: str) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            try:
                self._delete_rows(cursor, module_path, version)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        logger.info("Deleted %s@%s", module_path, version)

    async def delete_module_version(self, module_path: str, version: str) -> None:
        await asyncio.to_thread(self._delete_module_version, module_path, version)

    def _get_module_version(self, module_path: str, version: str) -> Optional[ModuleVersion]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT commit_time, version_type, readme_file_path, readme_contents,
                       repository_url, has_go_mod, is_redistributable
                FROM module_versions
                WHERE module_path = ? AND version = ?
                """,
                (module_path, version),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return ModuleVersion(
            module_path=module_path,
            version=version,
            commit_time=_ts(row[0]),
            version_type=VersionKind(row[1]),
            readme_file_path=row[2],
            readme_contents=row[3],
            repository_url=row[4],
            has_go_mod=bool(row[5]),
            is_redistributable=bool(row[6]),
        )

    async def get_module_version(self, module_path: str, version: str) -> Optional[ModuleVersion]:
        return await asyncio.to_thread(self._get_module_version, module_path, version)

    def _get_packages(self, module_path: str, version: str) -> list[Package]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT path, name, synopsis, documentation_html, imports, goos,
                       goarch, v1_path, licenses, is_redistributable
                FROM packages
                WHERE module_path = ? AND version = ?
                ORDER BY ordinal
                """,
                (module_path, version),
            )
            rows = cursor.fetchall()
        return [
            Package(
                path=row[0],
                name=row[1],
                synopsis=row[2],
                documentation_html=row[3],
                imports=json.loads(row[4]),
                goos=row[5],
                goarch=row[6],
                v1_path=row[7],
                licenses=[
                    LicenseMetadata(file_path=fp, types=tuple(types), coverage=coverage)
                    for fp, types, coverage in json.loads(row[8])
                ],
                is_redistributable=bool(row[9]),
            )
            for row in rows
        ]

    async def get_packages(self, module_path: str, version: str) -> list[Package]:
        return await asyncio.to_thread(self._get_packages, module_path, version)

    def _get_licenses(self, module_path: str, version: str) -> list[License]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT file_path, types, coverage, contents
                FROM licenses
                WHERE module_path = ? AND version = ?
                ORDER BY file_path
                """,
                (module_path, version),
            )
            rows = cursor.fetchall()
        return [
            License(
                metadata=LicenseMetadata(
                    file_path=row[0], types=tuple(json.loads(row[1])), coverage=row[2]
                ),
                contents=bytes(row[3]),
            )
            for row in rows
        ]

    async def get_licenses(self, module_path: str, version: str) -> list[License]:
        return await asyncio.to_thread(self._get_licenses, module_path, version)

    # Alternative paths and search.

    def _record_alternative_module_path(self, alternative: str, canonical: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "REPLACE INTO alternative_module_paths (alternative, canonical) VALUES (?, ?)",
                (alternative, canonical),
            )
            conn.commit()

    async def record_alternative_module_path(self, alternative: str, canonical: str) -> None:
        await asyncio.to_thread(self._record_alternative_module_path, alternative, canonical)

    def _get_canonical_module_path(self, alternative: str) -> Optional[str]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT canonical FROM alternative_module_paths WHERE alternative = ?",
                (alternative,),
            )
            row = cursor.fetchone()
        return row[0] if row else None

    async def get_canonical_module_path(self, alternative: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_canonical_module_path, alternative)

    def _delete_older_versions_from_search(self, module_path: str, version: str) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT package_path, version FROM search_documents WHERE module_path = ?",
                (module_path,),
            )
            # Versions are compared by semver precedence, which SQL cannot do.
            stale = [
                (path,)
                for path, v in cursor.fetchall()
                if semver.is_valid(v) and semver.compare(v, version) < 0
            ]
            cursor.executemany("DELETE FROM search_documents WHERE package_path = ?", stale)
            conn.commit()
        if stale:
            logger.info(
                "Deleted %d search documents of %s older than %s",
                len(stale),
                module_path,
                version,
            )
        return len(stale)

    async def delete_older_versions_from_search(self, module_path: str, version: str) -> int:
        return await asyncio.to_thread(
            self._delete_older_versions_from_search, module_path, version
        )

    def _get_search_documents(self, module_path: str) -> list[SearchDocument]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT package_path, module_path, version, synopsis
                FROM search_documents
                WHERE module_path = ?
                ORDER BY package_path
                """,
                (module_path,),
            )
            return [SearchDocument(*row) for row in cursor.fetchall()]

    async def get_search_documents(self, module_path: str) -> list[SearchDocument]:
        return await asyncio.to_thread(self._get_search_documents, module_path)
