"""Client for the Go module proxy protocol.

The proxy serves, for a module path and version:

* ``<path>/@v/<version>.info``: JSON with the canonical version and time
* ``<path>/@v/<version>.zip``: the module zip
* ``<path>/@v/list``: the known versions
* ``<path>/@latest``: like .info, for the latest version

Paths and versions are case-encoded (upper-case letters become "!"
followed by the lower-case letter).
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import aiohttp

from pkgindex import version as semver
from pkgindex.errors import InvalidArgument, NotFetched, NotFound, ProxyError, ProxyTimedOut
from pkgindex.modpath import escape_path, escape_version

logger = logging.getLogger(__name__)

DISABLE_FETCH_HEADER = "Disable-Module-Fetch"


@dataclass(frozen=True)
class VersionInfo:
    """Response of the .info endpoint."""

    version: str
    time: datetime


class ProxyClient:
    """Async client for a module proxy.

    Manages a shared aiohttp.ClientSession for connection pooling. Use as
    an async context manager or call close() when done.
    """

    def __init__(
        self,
        url: str,
        disable_fetch: bool = False,
        timeout: float = 300.0,
    ) -> None:
        """Initialize the client.

        Args:
            url: Base URL of the proxy.
            disable_fetch: Ask the proxy to serve only modules it already
                has. A miss is then reported as NotFetched.
            timeout: Total seconds allowed for a single request.
        """
        self.url = url.rstrip("/")
        self.disable_fetch = disable_fetch
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {DISABLE_FETCH_HEADER: "true"} if self.disable_fetch else None
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "ProxyClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def escaped_url(self, module_path: str, version: str, suffix: str) -> str:
        """Return the proxy URL for a module version and endpoint suffix.

        Args:
            module_path: Module path.
            version: Version, or "latest" (only with suffix "info").
            suffix: "info", "mod" or "zip".

        Raises:
            InvalidArgument: If the path, version or suffix is unusable.
        """
        if suffix not in ("info", "mod", "zip"):
            raise InvalidArgument(f'suffix must be "info", "mod" or "zip", got {suffix!r}')
        path = escape_path(module_path)
        if version == semver.LATEST:
            if suffix != "info":
                raise InvalidArgument(f"cannot ask for latest with suffix {suffix!r}")
            return f"{self.url}/{path}/@latest"
        return f"{self.url}/{path}/@v/{escape_version(version)}.{suffix}"

    async def _get(self, url: str) -> bytes:
        """GET url and return the body.

        Raises:
            NotFound: On 404 or 410.
            NotFetched: On 404 or 410 while fetching is disabled.
            ProxyTimedOut: If the request or the proxy's own fetch timed out.
            ProxyError: On any other failure.
        """
        logger.debug("GET %s", url)
        try:
            session = await self._get_session()
            async with session.get(url) as response:
                body = await response.read()
                if 200 <= response.status < 300:
                    return body
                if response.status in (404, 410):
                    text = body.decode("utf-8", errors="replace")
                    # The proxy reports its own upstream timeouts as not found.
                    if "fetch timed out" in text:
                        raise ProxyTimedOut(f"{url}: {text.strip()!r}")
                    if self.disable_fetch:
                        raise NotFetched(f"{url}: {text.strip()!r}")
                    raise NotFound(f"{url}: {text.strip()!r}")
                raise ProxyError(f"{url}: unexpected status {response.status}")
        except asyncio.TimeoutError as e:
            raise ProxyTimedOut(f"{url}: request timed out") from e
        except aiohttp.ClientError as e:
            raise ProxyError(f"{url}: {e}") from e

    async def get_info(self, module_path: str, version: str) -> VersionInfo:
        """Resolve a version, which may be "latest", to its canonical form.

        Raises:
            InvalidArgument: If the path or version cannot be escaped.
            ProxyError: If the response is not valid version info.
        """
        body = await self._get(self.escaped_url(module_path, version, "info"))
        try:
            data = json.loads(body)
            return VersionInfo(
                version=data["Version"],
                time=datetime.fromisoformat(data["Time"].replace("Z", "+00:00")),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProxyError(f"malformed version info for {module_path}@{version}: {e}") from e

    async def get_archive(self, module_path: str, version: str) -> bytes:
        """Return the module zip of a resolved version."""
        return await self._get(self.escaped_url(module_path, version, "zip"))

    async def list_versions(self, module_path: str) -> list[str]:
        """Return the versions the proxy knows for module_path."""
        body = await self._get(f"{self.url}/{escape_path(module_path)}/@v/list")
        return [line.strip() for line in body.decode("utf-8").splitlines() if line.strip()]
