"""Configuration for pkgindex.

Settings are read from ``PKGINDEX_*`` environment variables; the CLI
exposes the same settings as options. Processing limits are grouped in
:class:`Limits` so that tests can pass small values to the processor.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024

DEFAULT_PROXY_URL = "https://proxy.golang.org"
DEFAULT_DB_PATH = Path.home() / ".cache" / "pkgindex" / "pkgindex.db"
DEFAULT_WORKERS = 10
DEFAULT_FETCH_TIMEOUT = 300.0
# Time a queued item gets on top of the fetch timeout to record its state.
STATE_WRITE_GRACE = 30.0


@dataclass(frozen=True)
class Limits:
    """Ceilings applied while processing a module zip.

    Attributes:
        max_file_size: Largest .go file that is read, in bytes.
        max_packages_per_module: Most directories with .go files a module
            may have.
        max_imports_per_package: Most imports a single package may have.
        max_documentation_html: Largest rendered documentation, in bytes.
        max_license_size: Most bytes read from a license file.
        max_readme_size: Most bytes read from a README file.
    """

    max_file_size: int = 30 * MEGABYTE
    max_packages_per_module: int = 10000
    max_imports_per_package: int = 1000
    max_documentation_html: int = 20 * MEGABYTE
    max_license_size: int = 10 * MEGABYTE
    max_readme_size: int = MEGABYTE


@dataclass(frozen=True)
class Exclusions:
    """Modules that must never be fetched.

    Attributes:
        prefixes: Module path prefixes, mapped to the reason for excluding
            them. A prefix matches any path that starts with it.
        removed: "module@version" strings of versions removed from the
            proxy at their author's request.
    """

    prefixes: Mapping[str, str] = field(default_factory=dict)
    removed: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "prefixes", MappingProxyType(dict(self.prefixes)))
        object.__setattr__(self, "removed", frozenset(self.removed))

    def is_excluded(self, module_path: str, version: str) -> bool:
        if f"{module_path}@{version}" in self.removed:
            return True
        return any(module_path.startswith(prefix) for prefix in self.prefixes)


def parse_excluded(lines: Iterable[str]) -> dict[str, str]:
    """Parse the lines of an exclusion file.

    Each non-empty line holds a prefix followed by the reason for
    excluding it. Text after "#" is a comment.

    Raises:
        ValueError: If a line has a prefix but no reason.
    """
    prefixes: dict[str, str] = {}
    for lineno, line in enumerate(lines, start=1):
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.split(None, 1)
        if len(parts) < 2:
            raise ValueError(f"line {lineno}: missing reason for excluding {parts[0]!r}")
        prefixes[parts[0]] = parts[1].strip()
    return prefixes


def load_exclusions(path: Optional[Path], removed: Iterable[str] = ()) -> Exclusions:
    """Load an exclusion file.

    Args:
        path: File to read, or None for no prefix exclusions.
        removed: "module@version" strings to exclude as well.

    Raises:
        ValueError: If the file is malformed.
        OSError: If the file cannot be read.
    """
    prefixes: dict[str, str] = {}
    if path is not None:
        prefixes = parse_excluded(path.read_text(encoding="utf-8").splitlines())
        logger.info("Loaded %d excluded prefixes from %s", len(prefixes), path)
    return Exclusions(prefixes=prefixes, removed=frozenset(removed))


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


@dataclass(frozen=True)
class Config:
    """Runtime settings.

    Attributes:
        proxy_url: Base URL of the module proxy.
        db_path: Path of the SQLite database.
        workers: Number of fetches the queue runs at once.
        fetch_timeout: Seconds a single fetch may take.
        disable_proxy_fetch: Ask the proxy to serve only what it already has.
        exclusions_file: Exclusion file, if any.
        limits: Processing ceilings.
    """

    proxy_url: str = DEFAULT_PROXY_URL
    db_path: Path = DEFAULT_DB_PATH
    workers: int = DEFAULT_WORKERS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    disable_proxy_fetch: bool = False
    exclusions_file: Optional[Path] = None
    limits: Limits = field(default_factory=Limits)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a Config from PKGINDEX_* environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        defaults = Limits()
        limits = Limits(
            max_file_size=_env_int("PKGINDEX_MAX_FILE_SIZE", defaults.max_file_size),
            max_packages_per_module=_env_int(
                "PKGINDEX_MAX_PACKAGES_PER_MODULE", defaults.max_packages_per_module
            ),
            max_imports_per_package=_env_int(
                "PKGINDEX_MAX_IMPORTS_PER_PACKAGE", defaults.max_imports_per_package
            ),
            max_documentation_html=_env_int(
                "PKGINDEX_MAX_DOCUMENTATION_HTML", defaults.max_documentation_html
            ),
            max_license_size=_env_int("PKGINDEX_MAX_LICENSE_SIZE", defaults.max_license_size),
            max_readme_size=_env_int("PKGINDEX_MAX_README_SIZE", defaults.max_readme_size),
        )
        excluded = os.environ.get("PKGINDEX_EXCLUDED_FILE")
        timeout = os.environ.get("PKGINDEX_FETCH_TIMEOUT")
        return cls(
            proxy_url=os.environ.get("PKGINDEX_PROXY_URL", DEFAULT_PROXY_URL).rstrip("/"),
            db_path=Path(os.environ.get("PKGINDEX_DB", str(DEFAULT_DB_PATH))),
            workers=_env_int("PKGINDEX_WORKERS", DEFAULT_WORKERS),
            fetch_timeout=float(timeout) if timeout else DEFAULT_FETCH_TIMEOUT,
            disable_proxy_fetch=os.environ.get("PKGINDEX_DISABLE_PROXY_FETCH", "").lower()
            in ("1", "true", "yes"),
            exclusions_file=Path(excluded) if excluded else None,
            limits=limits,
        )
