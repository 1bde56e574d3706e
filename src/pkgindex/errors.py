"""Error taxonomy for the ingestion pipeline.

Every failure that can happen while fetching and processing a module
version maps to exactly one status code. The classes below carry that
code; :func:`to_status` recovers it from any exception, following the
``raise ... from ...`` chain so that context added by :func:`wrap` never
hides the classification.

Codes below 500 are terminal and never retried automatically. Codes of
500 and above are retryable.
"""

from typing import Optional

# Status codes that are not part of the IngestError hierarchy.
STATUS_OK = 200
STATUS_INTERNAL_ERROR = 500


class IngestError(Exception):
    """Base class for classified ingestion errors.

    Attributes:
        status: Status code recorded for a fetch that fails with this error.
    """

    status: int = STATUS_INTERNAL_ERROR


class InvalidArgument(IngestError):
    """The module path or version in the request is malformed."""

    status = 400


class Excluded(IngestError):
    """The module is on the operator-maintained exclusion list."""

    status = 403


class NotFound(IngestError):
    """The proxy no longer has the module version (404 or 410)."""

    status = 404


class DBModuleInsertInvalid(IngestError):
    """The module was fetched but the store rejected its data as invalid."""

    status = 480


class NotFetched(IngestError):
    """The proxy answered "not found" while fetching was disabled."""

    status = 481


class BadModule(IngestError):
    """The module zip is malformed or contains no usable packages."""

    status = 490


class AlternativeModule(IngestError):
    """The go.mod module path differs from the requested path."""

    status = 491


class ModuleTooLarge(IngestError):
    """The module exceeds the package or import ceilings."""

    status = 492


class InternalError(IngestError):
    """Unexpected fault, including faults while parsing archive contents."""

    status = STATUS_INTERNAL_ERROR


class ProxyTimedOut(IngestError):
    """A request to the module proxy timed out."""

    status = 550


class ProxyError(IngestError):
    """The module proxy returned an unexpected response."""

    status = 551


class HasIncompletePackages(IngestError):
    """Some directories with Go files could not be turned into packages.

    This is never raised out of a fetch; it only names the 290 status.
    """

    status = 290


class PackageError(IngestError):
    """Base class for per-package states (6xx)."""


class PackageBuildContextNotSupported(PackageError):
    status = 600


class PackageMaxImportsLimitExceeded(PackageError):
    status = 601


class PackageMaxFileSizeLimitExceeded(PackageError):
    status = 602


class PackageDocumentationHTMLTooLarge(PackageError):
    status = 603


class PackageInvalidContents(PackageError):
    status = 604


class PackageBadImportPath(PackageError):
    status = 605


class FetchPhaseError(IngestError):
    """Adds module, version and phase context to an underlying error.

    The status is taken from the wrapped error, so wrapping never changes
    how a failure is classified.

    Attributes:
        phase: Name of the pipeline step that failed (e.g. "get_info").
        module_path: Module path being fetched.
        version: Requested or resolved version.
    """

    def __init__(self, phase: str, module_path: str, version: str, err: BaseException):
        super().__init__(f"{phase}({module_path!r}, {version!r}): {err}")
        self.phase = phase
        self.module_path = module_path
        self.version = version
        self.status = to_status(err)


def wrap(err: BaseException, phase: str, module_path: str, version: str) -> FetchPhaseError:
    """Return a FetchPhaseError for err, chained to it.

    Use as ``raise wrap(e, "get_archive", path, version) from e``.
    """
    wrapped = FetchPhaseError(phase, module_path, version, err)
    wrapped.__cause__ = err
    return wrapped


def to_status(err: Optional[BaseException]) -> int:
    """Return the status code for err.

    The exception and its chain of causes are searched for the first
    classified error. Unclassified exceptions map to 500.

    Args:
        err: Exception to classify, or None for success.

    Returns:
        The status code.
    """
    if err is None:
        return STATUS_OK
    seen: set[int] = set()
    current: Optional[BaseException] = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, IngestError):
            return current.status
        current = current.__cause__ or current.__context__
    return STATUS_INTERNAL_ERROR


def is_retryable(status: int) -> bool:
    """Report whether a fetch that ended with status should be retried."""
    return status >= STATUS_INTERNAL_ERROR
