"""Unit tests for the SQLite persistence layer."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from pkgindex.errors import DBModuleInsertInvalid
from pkgindex.models import (
    License,
    LicenseMetadata,
    ModuleVersion,
    Package,
    PackageVersionState,
)
from pkgindex.persistence import SearchDocument, SqlitePersistence
from pkgindex.persistence.sqlite import validate_module_version
from pkgindex.version import VersionKind

T0 = datetime(2020, 5, 1, 12, 0, tzinfo=UTC)
MODULE = "github.com/my/module"


@pytest.fixture
def clock(mocker):
    """Freeze the store's notion of the current time at T0."""
    return mocker.patch("pkgindex.persistence.sqlite._now", return_value=T0)


def _module(version="v1.0.0", module_path=MODULE):
    return ModuleVersion(
        module_path=module_path,
        version=version,
        commit_time=T0,
        version_type=VersionKind.RELEASE,
        readme_file_path="README.md",
        readme_contents="# readme",
        repository_url="https://github.com/my/module",
        has_go_mod=True,
        is_redistributable=True,
    )


def _packages(module_path=MODULE, synopsis="Package foo does foo."):
    mit = LicenseMetadata("LICENSE", ("MIT",), 100.0)
    return [
        Package(
            path=module_path,
            name="foo",
            synopsis=synopsis,
            documentation_html="<p>foo</p>",
            imports=["fmt"],
            v1_path=module_path,
            licenses=[mit],
            is_redistributable=True,
        ),
        Package(
            path=f"{module_path}/bar",
            name="bar",
            synopsis="Package bar does bar.",
            documentation_html="<p>bar</p>",
            goos="windows",
            goarch="amd64",
            v1_path=f"{module_path}/bar",
        ),
    ]


def _licenses():
    return [License(LicenseMetadata("LICENSE", ("MIT",), 100.0), contents=b"MIT text")]


class TestVersionState:
    """Test recording fetch outcomes."""

    @pytest.mark.asyncio
    async def test_first_upsert(self, store: SqlitePersistence, clock):
        await store.upsert_version_state(
            MODULE,
            "v1.0.0",
            290,
            error="incomplete",
            go_mod_path=MODULE,
            package_states=[PackageVersionState(f"{MODULE}/bad", 604, "bad package")],
        )
        vs = await store.get_version_state(MODULE, "v1.0.0")

        assert vs.status == 290
        assert vs.try_count == 1
        assert vs.created_at == T0
        assert vs.last_processed_at == T0
        assert vs.next_processed_after == T0 + timedelta(minutes=1)
        assert vs.error == "incomplete"
        assert vs.go_mod_path == MODULE
        assert vs.package_states == [PackageVersionState(f"{MODULE}/bad", 604, "bad package")]

    @pytest.mark.asyncio
    async def test_missing(self, store: SqlitePersistence):
        assert await store.get_version_state(MODULE, "v1.0.0") is None

    @pytest.mark.asyncio
    async def test_backoff_doubles_up_to_an_hour(self, store: SqlitePersistence, clock):
        now = T0
        intervals = []
        for _ in range(9):
            clock.return_value = now
            await store.upsert_version_state(MODULE, "v1.0.0", 550, error="timeout")
            vs = await store.get_version_state(MODULE, "v1.0.0")
            intervals.append(vs.next_processed_after - now)
            now = vs.next_processed_after + timedelta(seconds=5)

        assert [i // timedelta(minutes=1) for i in intervals] == [1, 2, 4, 8, 16, 32, 60, 60, 60]
        assert vs.try_count == 9
        assert vs.created_at == T0

    @pytest.mark.asyncio
    async def test_package_states_replaced(self, store: SqlitePersistence):
        await store.upsert_version_state(
            MODULE, "v1.0.0", 290, package_states=[PackageVersionState(f"{MODULE}/a", 604)]
        )
        await store.upsert_version_state(
            MODULE, "v1.0.0", 200, package_states=[PackageVersionState(f"{MODULE}/b", 200)]
        )
        vs = await store.get_version_state(MODULE, "v1.0.0")

        assert vs.status == 200
        assert vs.try_count == 2
        assert [s.package_path for s in vs.package_states] == [f"{MODULE}/b"]

    @pytest.mark.asyncio
    async def test_concurrent_upserts_count_every_try(self, store: SqlitePersistence):
        await asyncio.gather(
            *(store.upsert_version_state(MODULE, "v1.0.0", 500, error="retry") for _ in range(8))
        )
        vs = await store.get_version_state(MODULE, "v1.0.0")

        assert vs.try_count == 8


class TestNextVersionsToFetch:
    """Test selection of versions due for a fetch."""

    @pytest.fixture
    async def populated(self, store: SqlitePersistence, clock):
        await store.insert_index_versions([("a.com/m", "v1.0.0"), ("a.com/m", "v1.1.0")])
        await store.upsert_version_state("b.com/m", "v1.0.0", 550)
        await store.upsert_version_state("c.com/m", "v1.0.0", 200)
        await store.upsert_version_state("d.com/m", "v1.0.0", 404)
        return store

    @pytest.mark.asyncio
    async def test_never_processed_first(self, populated, clock):
        clock.return_value = T0 + timedelta(hours=1)
        states = await populated.get_next_versions_to_fetch(10)

        assert [(s.module_path, s.version, s.status) for s in states] == [
            ("a.com/m", "v1.0.0", 0),
            ("a.com/m", "v1.1.0", 0),
            ("b.com/m", "v1.0.0", 550),
        ]
        assert states[0].try_count == 0
        assert states[0].last_processed_at is None

    @pytest.mark.asyncio
    async def test_limit(self, populated, clock):
        clock.return_value = T0 + timedelta(hours=1)
        states = await populated.get_next_versions_to_fetch(1)
        assert [(s.module_path, s.version) for s in states] == [("a.com/m", "v1.0.0")]

    @pytest.mark.asyncio
    async def test_backoff_not_elapsed(self, populated, clock):
        clock.return_value = T0 + timedelta(seconds=30)
        states = await populated.get_next_versions_to_fetch(10)
        assert [s.module_path for s in states] == ["a.com/m", "a.com/m"]

    @pytest.mark.asyncio
    async def test_insert_index_versions_is_idempotent(self, populated):
        assert await populated.insert_index_versions([("a.com/m", "v1.0.0")]) == 0
        assert await populated.insert_index_versions([("a.com/m", "v1.2.0")]) == 1

    @pytest.mark.asyncio
    async def test_index_version_keeps_existing_state(self, populated):
        await populated.insert_index_versions([("c.com/m", "v1.0.0")])
        vs = await populated.get_version_state("c.com/m", "v1.0.0")
        assert vs.status == 200
        assert vs.try_count == 1


class TestModuleVersion:
    """Test storing module data."""

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store: SqlitePersistence):
        await store.insert_module_version(_module(), _packages(), _licenses())

        mv = await store.get_module_version(MODULE, "v1.0.0")
        assert mv == _module()

        packages = await store.get_packages(MODULE, "v1.0.0")
        assert packages == _packages()

        licenses = await store.get_licenses(MODULE, "v1.0.0")
        assert licenses == _licenses()

    @pytest.mark.asyncio
    async def test_insert_replaces(self, store: SqlitePersistence):
        await store.insert_module_version(_module(), _packages(), _licenses())
        await store.insert_module_version(_module(), _packages()[:1], [])

        assert len(await store.get_packages(MODULE, "v1.0.0")) == 1
        assert await store.get_licenses(MODULE, "v1.0.0") == []

    @pytest.mark.asyncio
    async def test_delete(self, store: SqlitePersistence):
        await store.insert_module_version(_module(), _packages(), _licenses())
        await store.delete_module_version(MODULE, "v1.0.0")

        assert await store.get_module_version(MODULE, "v1.0.0") is None
        assert await store.get_packages(MODULE, "v1.0.0") == []
        assert await store.get_licenses(MODULE, "v1.0.0") == []
        assert await store.get_search_documents(MODULE) == []

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store: SqlitePersistence):
        await store.delete_module_version(MODULE, "v9.9.9")

    @pytest.mark.asyncio
    async def test_invalid_module_rejected(self, store: SqlitePersistence):
        with pytest.raises(DBModuleInsertInvalid):
            await store.insert_module_version(_module(version="master"), _packages(), [])
        assert await store.get_module_version(MODULE, "master") is None


class TestValidateModuleVersion:
    """Test checks run before a module version is stored."""

    def test_valid(self):
        validate_module_version(_module(), _packages())

    def test_package_outside_module(self):
        packages = _packages(module_path="github.com/other/module")
        with pytest.raises(DBModuleInsertInvalid, match="not in module"):
            validate_module_version(_module(), packages)

    def test_prefix_is_not_parent(self):
        packages = _packages(module_path=MODULE + "x")
        with pytest.raises(DBModuleInsertInvalid):
            validate_module_version(_module(), packages)

    def test_duplicate_package(self):
        packages = _packages()
        with pytest.raises(DBModuleInsertInvalid, match="duplicate"):
            validate_module_version(_module(), packages + packages[:1])

    def test_std_packages(self):
        std = ModuleVersion("std", "v1.21.0", T0, VersionKind.RELEASE)
        validate_module_version(std, [Package("net/http", "http", "", "")])


class TestSearchDocuments:
    """Test the search-facing rows of packages."""

    @pytest.mark.asyncio
    async def test_newest_version_wins(self, store: SqlitePersistence):
        await store.insert_module_version(
            _module("v1.1.0"), _packages(synopsis="New."), []
        )
        await store.insert_module_version(
            _module("v1.0.0"), _packages(synopsis="Old."), []
        )

        docs = await store.get_search_documents(MODULE)
        assert docs == [
            SearchDocument(MODULE, MODULE, "v1.1.0", "New."),
            SearchDocument(f"{MODULE}/bar", MODULE, "v1.1.0", "Package bar does bar."),
        ]

    @pytest.mark.asyncio
    async def test_delete_older_versions(self, store: SqlitePersistence):
        await store.insert_module_version(_module("v1.0.0"), _packages(), [])

        assert await store.delete_older_versions_from_search(MODULE, "v1.0.0") == 0
        assert await store.delete_older_versions_from_search(MODULE, "v1.2.0") == 2
        assert await store.get_search_documents(MODULE) == []
        # The module data itself is kept.
        assert await store.get_module_version(MODULE, "v1.0.0") is not None


class TestAlternativeModulePaths:
    """Test recording of paths that declare a different module."""

    @pytest.mark.asyncio
    async def test_record_and_get(self, store: SqlitePersistence):
        await store.record_alternative_module_path("github.com/My/Module", MODULE)
        await store.record_alternative_module_path("github.com/My/Module", MODULE + "/v2")

        assert await store.get_canonical_module_path("github.com/My/Module") == MODULE + "/v2"
        assert await store.get_canonical_module_path(MODULE) is None


def test_creates_parent_directory(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "pkgindex.db"
    SqlitePersistence(db_path=db_path)
    assert db_path.exists()
