"""Fetching and storing module versions.

:class:`Fetcher` runs one fetch of a module version end to end: it
resolves the version with the proxy, downloads and processes the zip,
stores the result and finally records the outcome as the version's
state. Every outcome, including failures, is reduced to a status code
(see :mod:`pkgindex.errors`).
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from pkgindex import modpath
from pkgindex import version as semver
from pkgindex.archive import ArchiveReader
from pkgindex.config import DEFAULT_FETCH_TIMEOUT, Exclusions, Limits
from pkgindex.errors import (
    STATUS_INTERNAL_ERROR,
    STATUS_OK,
    AlternativeModule,
    BadModule,
    Excluded,
    HasIncompletePackages,
    IngestError,
    InternalError,
    InvalidArgument,
    ProxyTimedOut,
    to_status,
    wrap,
)
from pkgindex.licenses import LicenseMatcher, detect, redistributable
from pkgindex.models import FetchResult, ModuleVersion
from pkgindex.persistence import Persistence
from pkgindex.processor import extract_packages, extract_readme
from pkgindex.proxy import ProxyClient
from pkgindex.source import repository_url

logger = logging.getLogger(__name__)


def _check_request(module_path: str, version: str) -> None:
    modpath.check_module_path(module_path)
    if version != semver.LATEST and not semver.is_valid(version):
        raise InvalidArgument(f"invalid version {version!r}")


class Fetcher:
    """Fetches module versions from a proxy into a store.

    Attributes:
        proxy: Module proxy client.
        db: Where results and version states are written.
        exclusions: Modules that are never fetched.
        limits: Processing ceilings.
        timeout: Seconds a fetch may take, from the first proxy request
            until the module is processed.
    """

    def __init__(
        self,
        proxy: ProxyClient,
        db: Persistence,
        exclusions: Optional[Exclusions] = None,
        limits: Optional[Limits] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        self.proxy = proxy
        self.db = db
        self.exclusions = exclusions or Exclusions()
        self.limits = limits or Limits()
        self.timeout = timeout

    async def fetch_and_update_state(
        self, module_path: str, version: str
    ) -> tuple[int, Optional[Exception]]:
        """Fetch a module version, store it and record its state.

        The version state is written last, so that a failure in any earlier
        step leaves the version eligible for a retry.

        Args:
            module_path: Module path.
            version: Semantic version or "latest".

        Returns:
            The status code and, unless the status is 200, the error that
            caused it.
        """
        fr = await self.fetch_and_insert_module(module_path, version)

        # The module was not stored. Remove what an earlier fetch stored.
        if 400 <= fr.status < 500:
            await self._delete_module(fr)

        if not semver.is_valid(fr.resolved_version):
            # Only versions that resolved to a semantic version get a state.
            self._log_result(fr, "Not recording state")
            return fr.status, fr.error

        try:
            await self.db.upsert_version_state(
                fr.module_path,
                fr.resolved_version,
                fr.status,
                error=str(fr.error) if fr.error is not None else "",
                go_mod_path=fr.go_mod_path,
                package_states=fr.package_states,
            )
        except Exception as e:
            logger.error(
                "Updating version state of %s@%s failed: %s",
                fr.module_path,
                fr.resolved_version,
                e,
            )
            return STATUS_INTERNAL_ERROR, wrap(
                e, "upsert_version_state", fr.module_path, fr.resolved_version
            )
        self._log_result(fr, "Updated version state")
        return fr.status, fr.error

    async def fetch_and_insert_module(self, module_path: str, version: str) -> FetchResult:
        """Fetch a module version and store it.

        Never raises for classified failures; they are reported through
        the status and error of the result.
        """
        fr = await self.fetch_module(module_path, version)
        if fr.module is None:
            return fr
        try:
            await self.db.insert_module_version(fr.module, fr.packages, fr.licenses)
        except IngestError as e:
            self._fail(fr, wrap(e, "insert_module_version", module_path, fr.resolved_version))
        except Exception as e:
            # Storage failures are retried.
            logger.exception("Storing %s@%s failed", module_path, fr.resolved_version)
            self._fail(fr, wrap(e, "insert_module_version", module_path, fr.resolved_version))
        return fr

    async def fetch_module(self, module_path: str, version: str) -> FetchResult:
        """Fetch and process a module version without storing it.

        Returns:
            The result. On failure its status and error are set and its
            resolved version is the requested one.
        """
        fr = FetchResult(module_path=module_path, requested_version=version)
        try:
            await asyncio.wait_for(self._fetch(fr), self.timeout)
        except asyncio.TimeoutError:
            logger.error("Fetching %s@%s timed out after %.0fs", module_path, version, self.timeout)
            self._fail(fr, ProxyTimedOut(f"fetching {module_path}@{version} timed out"))
            return fr
        except IngestError as e:
            self._fail(fr, e)
            return fr
        fr.status = STATUS_OK
        if any(s.status != STATUS_OK for s in fr.package_states):
            fr.status = HasIncompletePackages.status
        return fr

    async def _fetch(self, fr: FetchResult) -> None:
        module_path, version = fr.module_path, fr.requested_version
        _check_request(module_path, version)
        if self.exclusions.is_excluded(module_path, version):
            raise Excluded(f"{module_path}@{version} is excluded")

        try:
            info = await self.proxy.get_info(module_path, version)
        except IngestError as e:
            raise wrap(e, "get_info", module_path, version) from e
        fr.resolved_version = info.version
        if info.version != version and self.exclusions.is_excluded(module_path, info.version):
            raise Excluded(f"{module_path}@{info.version} is excluded")

        try:
            data = await self.proxy.get_archive(module_path, info.version)
        except IngestError as e:
            raise wrap(e, "get_archive", module_path, info.version) from e

        logger.info("Processing %s@%s (%d bytes)", module_path, info.version, len(data))
        # The worker thread keeps running if the fetch times out, so it fills
        # its own result and fr only takes it over once the thread is done.
        processed = FetchResult(module_path, version, resolved_version=info.version)
        try:
            await asyncio.to_thread(self._process_zip, processed, data, info.time)
        except IngestError as e:
            fr.go_mod_path = processed.go_mod_path
            raise wrap(e, "process_zip", module_path, info.version) from e
        except Exception as e:
            logger.exception("Processing %s@%s failed", module_path, info.version)
            raise wrap(
                InternalError(f"processing zip: {e!r}"), "process_zip", module_path, info.version
            ) from e
        fr.go_mod_path = processed.go_mod_path
        fr.licenses = processed.licenses
        fr.packages = processed.packages
        fr.package_states = processed.package_states
        fr.module = processed.module

    def _process_zip(self, fr: FetchResult, data: bytes, commit_time: datetime) -> None:
        module_path, version = fr.module_path, fr.resolved_version
        has_go_mod = False
        with ArchiveReader.from_bytes(data, module_path, version) as archive:
            if module_path == modpath.STDLIB_MODULE_PATH:
                fr.go_mod_path = module_path
                has_go_mod = True
            else:
                contents = archive.read_path("go.mod", self.limits.max_file_size)
                if contents is not None:
                    has_go_mod = True
                    go_mod_path = modpath.parse_go_mod_module(contents)
                    if go_mod_path is None:
                        raise BadModule("go.mod has no module path")
                    fr.go_mod_path = go_mod_path
                    if go_mod_path != module_path:
                        raise AlternativeModule(
                            f"module path={module_path}, go.mod path={go_mod_path}"
                        )

            licenses = detect(archive, self.limits)
            matcher = LicenseMatcher([lic.metadata for lic in licenses])
            extraction = extract_packages(archive, module_path, version, matcher, self.limits)
            readme = extract_readme(archive, self.limits)

        fr.licenses = licenses
        fr.packages = extraction.packages
        fr.package_states = extraction.package_states
        fr.module = ModuleVersion(
            module_path=module_path,
            version=version,
            commit_time=commit_time,
            version_type=semver.kind(version),
            readme_file_path=readme.file_path if readme else None,
            readme_contents=readme.contents if readme else None,
            repository_url=repository_url(module_path),
            has_go_mod=has_go_mod,
            is_redistributable=redistributable(matcher.match(".")),
        )

    @staticmethod
    def _fail(fr: FetchResult, err: Exception) -> None:
        fr.error = err
        fr.status = to_status(err)
        fr.resolved_version = fr.requested_version
        fr.module = None

    async def _delete_module(self, fr: FetchResult) -> None:
        try:
            await self.db.delete_module_version(fr.module_path, fr.resolved_version)
            if (
                fr.status == AlternativeModule.status
                and fr.go_mod_path
                and semver.is_valid(fr.resolved_version)
            ):
                await self.db.record_alternative_module_path(fr.module_path, fr.go_mod_path)
                await self.db.delete_older_versions_from_search(
                    fr.module_path, fr.resolved_version
                )
        except Exception as e:
            # Storage failures are retried.
            logger.error("Deleting %s@%s failed: %s", fr.module_path, fr.resolved_version, e)
            fr.error = wrap(e, "delete_module_version", fr.module_path, fr.resolved_version)
            fr.status = STATUS_INTERNAL_ERROR

    @staticmethod
    def _log_result(fr: FetchResult, msg: str) -> None:
        args = (msg, fr.module_path, fr.resolved_version, fr.status, fr.error)
        if fr.status >= STATUS_INTERNAL_ERROR:
            logger.error("%s for %s@%s: status=%d, error=%s", *args)
        elif fr.error is not None:
            logger.warning("%s for %s@%s: status=%d, error=%s", *args)
        else:
            logger.info("%s for %s@%s: status=%d", *args[:-1])
