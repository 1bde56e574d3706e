"""pkgindex - Go module ingestion pipeline.

This package fetches Go module versions from a module proxy, extracts
package documentation and license information from the module zips, and
stores the results along with the state of every fetch.
"""

__version__ = "0.1.0"

from pkgindex.models import (
    BuildContext,
    License,
    LicenseMetadata,
    ModuleVersion,
    Package,
    VersionState,
)

__all__ = [
    "__version__",
    "BuildContext",
    "License",
    "LicenseMetadata",
    "ModuleVersion",
    "Package",
    "VersionState",
]
