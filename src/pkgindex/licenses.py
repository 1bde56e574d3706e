"""License detection and per-directory license matching.

License files are found by name, classified by comparing their text with
known licenses, and indexed by directory. A license applies to the
directory that contains it and to every directory below it.

Classification uses two techniques:

* short licenses (MIT, BSD, ISC, ...) are compared word by word with a
  bundled copy of their text, so that reformatting or small edits do not
  prevent a match;
* long licenses (Apache, GPL, MPL, Creative Commons, ...) are recognized
  by distinctive anchor phrases that only appear in their full text.

``SPDX-License-Identifier`` lines are parsed with license-expression.
"""

import logging
import posixpath
import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from functools import lru_cache
from importlib.resources import files
from typing import Optional

from license_expression import ExpressionError, get_spdx_licensing

from pkgindex.archive import ArchiveReader
from pkgindex.config import Limits
from pkgindex.models import License, LicenseMetadata

logger = logging.getLogger(__name__)

SPDX = get_spdx_licensing()

# Minimum percentage of a file that must be recognized license text.
COVERAGE_THRESHOLD = 75

# Fraction of a bundled license text that must be found in a file.
_TEMPLATE_THRESHOLD = 0.9

# Matching runs shorter than this many words are noise.
_MIN_BLOCK_WORDS = 3

FILE_NAMES = (
    "COPYING",
    "COPYING.md",
    "COPYING.markdown",
    "COPYING.txt",
    "LICENCE",
    "LICENCE.md",
    "LICENCE.markdown",
    "LICENCE.txt",
    "LICENSE",
    "LICENSE.md",
    "LICENSE.markdown",
    "LICENSE.txt",
    "LICENSE-2.0.txt",
    "LICENCE-2.0.txt",
    "LICENSE-APACHE",
    "LICENCE-APACHE",
    "LICENSE-APACHE-2.0.txt",
    "LICENCE-APACHE-2.0.txt",
    "LICENSE-MIT",
    "LICENCE-MIT",
    "LICENSE.MIT",
    "LICENCE.MIT",
    "LICENSE.code",
    "LICENCE.code",
    "LICENSE.docs",
    "LICENCE.docs",
    "LICENSE.rst",
    "LICENCE.rst",
    "MIT-LICENSE",
    "MIT-LICENCE",
    "MIT-LICENSE.md",
    "MIT-LICENCE.md",
    "MIT-LICENSE.markdown",
    "MIT-LICENCE.markdown",
    "MIT-LICENSE.txt",
    "MIT-LICENCE.txt",
    "MIT_LICENSE",
    "MIT_LICENCE",
    "UNLICENSE",
    "UNLICENCE",
)

_FILE_NAMES_LOWER = frozenset(name.lower() for name in FILE_NAMES)

REDISTRIBUTABLE_TYPES = (
    "AFL-3.0",
    "AGPL-3.0",
    "AGPL-3.0-only",
    "AGPL-3.0-or-later",
    "Apache-1.1",
    "Apache-2.0",
    "Artistic-2.0",
    "BlueOak-1.0.0",
    "0BSD",
    "BSD-1-Clause",
    "BSD-2-Clause",
    "BSD-2-Clause-Patent",
    "BSD-2-Clause-Views",
    "BSD-3-Clause",
    "BSD-3-Clause-Clear",
    "BSD-3-Clause-Open-MPI",
    "BSD-4-Clause",
    "BSD-4-Clause-UC",
    "BSL-1.0",
    "CC-BY-3.0",
    "CC-BY-4.0",
    "CC-BY-SA-3.0",
    "CC-BY-SA-4.0",
    "CECILL-2.1",
    "CC0-1.0",
    "EPL-1.0",
    "EPL-2.0",
    "EUPL-1.2",
    "GPL-2.0",
    "GPL-2.0-only",
    "GPL-2.0-or-later",
    "GPL-3.0",
    "GPL-3.0-only",
    "GPL-3.0-or-later",
    "HPND",
    "ISC",
    "JSON",
    "LGPL-2.1",
    "LGPL-2.1-only",
    "LGPL-2.1-or-later",
    "LGPL-3.0",
    "LGPL-3.0-only",
    "LGPL-3.0-or-later",
    "MIT",
    "MIT-0",
    "MPL-2.0",
    "MPL-2.0-no-copyleft-exception",
    "MulanPSL-2.0",
    "NIST-PD",
    "NIST-PD-fallback",
    "NCSA",
    "OpenSSL",
    "OSL-3.0",
    "PostgreSQL",
    "Python-2.0",
    "Unlicense",
    "UPL-1.0",
    "Zlib",
)

_REDISTRIBUTABLE = frozenset(REDISTRIBUTABLE_TYPES) | {"Freetype"}

# Recognized, but neither granting nor restricting redistribution.
IGNORABLE_TYPES = frozenset(
    ["CC-Notice", "GooglePatentClause", "GooglePatentsFile", "blessing", "OFL-1.1"]
)

# Accepted licenses not approved by the OSI link to their SPDX page.
NON_OSI_TYPES = frozenset(
    [
        "BlueOak-1.0.0",
        "BSD-2-Clause-Views",
        "CC-BY-3.0",
        "CC-BY-4.0",
        "CC-BY-SA-3.0",
        "CC-BY-SA-4.0",
        "CC0-1.0",
        "JSON",
        "NIST",
        "OpenSSL",
    ]
)

# License texts bundled in pkgindex.licensetexts, compared word by word.
TEMPLATE_TYPES = (
    "0BSD",
    "BSD-2-Clause",
    "BSD-3-Clause",
    "BSL-1.0",
    "ISC",
    "MIT",
    "Unlicense",
    "Zlib",
)

# Every phrase must appear, after normalization, for a long license to be
# recognized. A recognized long license covers the whole file.
ANCHOR_PHRASES: dict[str, tuple[str, ...]] = {
    "Apache-2.0": (
        "apache license version 2 0 january 2004",
        "terms and conditions for use reproduction and distribution",
    ),
    "GPL-2.0": (
        "gnu general public license version 2 june 1991",
        "terms and conditions for copying distribution and modification",
    ),
    "GPL-3.0": (
        "gnu general public license version 3 29 june 2007",
        "terms and conditions",
    ),
    "LGPL-2.1": ("gnu lesser general public license version 2 1 february 1999",),
    "LGPL-3.0": ("gnu lesser general public license version 3 29 june 2007",),
    "AGPL-3.0": ("gnu affero general public license version 3 19 november 2007",),
    "MPL-2.0": (
        "mozilla public license version 2 0",
        "exhibit a source code form license notice",
    ),
    "EPL-1.0": ("eclipse public license v 1 0",),
    "EPL-2.0": ("eclipse public license v 2 0",),
    "CC0-1.0": ("cc0 1 0 universal", "statement of purpose"),
    "CC-BY-4.0": ("creative commons attribution 4 0 international public license",),
    "CC-BY-SA-4.0": (
        "creative commons attribution sharealike 4 0 international public license",
    ),
    "CC-BY-NC-4.0": (
        "creative commons attribution noncommercial 4 0 international public license",
    ),
    "CC-BY-NC-SA-4.0": (
        "creative commons attribution noncommercial sharealike 4 0 international public license",
    ),
    "CC-BY-ND-4.0": (
        "creative commons attribution noderivatives 4 0 international public license",
    ),
    "BUSL-1.1": ("business source license 1 1",),
    "SSPL-1.0": ("server side public license", "version 1 october 16 2018"),
    "Commons-Clause": ("commons clause license condition v1 0",),
}

_WORD_RE = re.compile(r"[a-z0-9]+")
_COPYRIGHT_RE = re.compile(r"^\s*(copyright\b|\(c\)|©)", re.IGNORECASE)
_SPDX_RE = re.compile(r"SPDX-License-Identifier:\s*(?P<expr>.+?)\s*(?:\*/|-->)?\s*$")


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def _normalize(text: str) -> tuple[list[str], list[str]]:
    """Split text into words, separating SPDX lines from license text.

    Copyright lines are dropped: they differ in every file and are not
    part of any license.

    Returns:
        The words of the license text and the SPDX expressions found.
    """
    words: list[str] = []
    expressions: list[str] = []
    for line in text.splitlines():
        m = _SPDX_RE.search(line)
        if m is not None:
            expressions.append(m.group("expr"))
            continue
        if _COPYRIGHT_RE.match(line):
            continue
        words.extend(_words(line))
    return words, expressions


@lru_cache(maxsize=None)
def _template_words(license_type: str) -> tuple[str, ...]:
    text = files("pkgindex.licensetexts").joinpath(f"{license_type}.txt").read_text(encoding="utf-8")
    return tuple(_normalize(text)[0])


def _spdx_types(expression: str) -> list[str]:
    try:
        parsed = SPDX.parse(expression, validate=True)
    except ExpressionError as e:
        logger.debug("Ignoring invalid SPDX expression %r: %s", expression, e)
        return []
    if parsed is None:
        return []
    return [key for key in SPDX.license_keys(parsed) if "exception" not in key.lower()]


@dataclass(frozen=True)
class _Match:
    license_type: str
    start: int
    end: int
    matched: int
    template_size: int

    @property
    def size(self) -> int:
        return self.end - self.start


def _template_match(words: list[str], license_type: str) -> Optional[_Match]:
    template = _template_words(license_type)
    if not template or not words:
        return None
    matcher = SequenceMatcher(None, words, template, autojunk=False)
    blocks = [b for b in matcher.get_matching_blocks() if b.size >= _MIN_BLOCK_WORDS]
    matched = sum(b.size for b in blocks)
    if matched < _TEMPLATE_THRESHOLD * len(template):
        return None
    return _Match(
        license_type,
        blocks[0].a,
        blocks[-1].a + blocks[-1].size,
        matched,
        len(template),
    )


def classify(contents: bytes) -> tuple[tuple[str, ...], float]:
    """Classify the text of a license file.

    Args:
        contents: Raw file contents.

    Returns:
        The sorted license types found and the percentage of the file
        they cover. Types are empty when coverage is below the threshold.
    """
    text = contents.decode("utf-8", errors="replace")
    words, expressions = _normalize(text)

    types: set[str] = set()
    for expr in expressions:
        types.update(_spdx_types(expr))

    total = len(words) + len(expressions)
    if total == 0:
        return (), 0.0

    covered = len(expressions) if types else 0
    joined = " " + " ".join(words) + " "
    anchored = [
        t
        for t, phrases in ANCHOR_PHRASES.items()
        if all(f" {phrase} " in joined for phrase in phrases)
    ]
    if anchored:
        types.update(anchored)
        covered = total
    else:
        candidates = [m for t in TEMPLATE_TYPES if (m := _template_match(words, t)) is not None]
        accepted: list[_Match] = []
        # The license with the most matched words wins over the smaller
        # licenses it contains; a span alone cannot tell BSD-2 from BSD-3.
        # On a tie the more completely matched template wins.
        for m in sorted(candidates, key=lambda m: (-m.matched, m.template_size)):
            if any(m.start < a.end and a.start < m.end for a in accepted):
                continue
            accepted.append(m)
        for m in accepted:
            types.add(m.license_type)
            covered += m.size

    coverage = min(100.0, 100.0 * covered / total)
    if coverage < COVERAGE_THRESHOLD or not types:
        return (), coverage
    return tuple(sorted(types)), coverage


def is_license_file_name(name: str) -> bool:
    """Report whether a file base name is a candidate license file."""
    return name.lower() in _FILE_NAMES_LOWER


def is_vendored_file(name: str) -> bool:
    """Report whether name is in a proper subdirectory of a vendor directory.

    "vendor/LICENSE" is not vendored, since a Go package may be named
    vendor, but "vendor/foo/LICENSE" is.
    """
    if name.startswith("vendor/"):
        rest = name[len("vendor/"):]
    else:
        i = name.find("/vendor/")
        if i < 0:
            return False
        rest = name[i + len("/vendor/"):]
    return "/" in rest


def _valid_file_path(path: str) -> bool:
    if not path or path.startswith("/") or "\\" in path:
        return False
    return all(elem not in ("", ".", "..") for elem in path.split("/"))


def detect(archive: ArchiveReader, limits: Optional[Limits] = None) -> list[License]:
    """Find and classify every license file of a module.

    Args:
        archive: The module zip.
        limits: Processing ceilings; only max_license_size is used.

    Returns:
        The licenses, sorted by file path. Files that are too large or
        cannot be classified are included with no types.
    """
    limits = limits or Limits()
    licenses = []
    for entry in archive.entries():
        if entry.is_dir or entry.path is None:
            continue
        if not is_license_file_name(posixpath.basename(entry.path)):
            continue
        if is_vendored_file(entry.path):
            continue
        if not _valid_file_path(entry.path):
            logger.debug("Skipping license file with bad path %r", entry.path)
            continue
        if entry.size > limits.max_license_size:
            logger.warning(
                "%s@%s: license file %s is %d bytes, exceeds limit %d",
                archive.module_path,
                archive.version,
                entry.path,
                entry.size,
                limits.max_license_size,
            )
            licenses.append(License(metadata=LicenseMetadata(file_path=entry.path)))
            continue
        contents = archive.read(entry, limits.max_license_size)
        types, coverage = classify(contents)
        if not types:
            logger.info(
                "%s@%s: could not classify %s (coverage %.1f%%)",
                archive.module_path,
                archive.version,
                entry.path,
                coverage,
            )
        licenses.append(
            License(
                metadata=LicenseMetadata(file_path=entry.path, types=types, coverage=coverage),
                contents=contents,
            )
        )
    licenses.sort(key=lambda lic: lic.file_path)
    return licenses


def _dir_of(file_path: str) -> str:
    return posixpath.dirname(file_path) or "."


class LicenseMatcher:
    """Maps directories of a module to the licenses that apply to them.

    A license applies to the directory containing it and to every
    directory below it. Licenses at the module root apply everywhere.
    """

    def __init__(self, metadata: list[LicenseMetadata]) -> None:
        self._by_dir: dict[str, list[LicenseMetadata]] = {}
        for m in metadata:
            self._by_dir.setdefault(_dir_of(m.file_path), []).append(m)
        self._dirs = sorted(self._by_dir, key=lambda d: (d != ".", d.count("/"), d))

    def match(self, directory: str) -> list[LicenseMetadata]:
        """Return the licenses that apply to directory.

        Args:
            directory: Path relative to the module root; "." is the root.

        Returns:
            Root licenses first, then licenses of deeper directories.
            Absolute paths and paths escaping the root match nothing.
        """
        clean = posixpath.normpath(directory or ".")
        if posixpath.isabs(clean) or clean == ".." or clean.startswith("../"):
            return []
        result: list[LicenseMetadata] = []
        for prefix in self._dirs:
            # Append a slash so that a/b does not match a/bc.
            if prefix == "." or (clean + "/").startswith(prefix + "/"):
                result.extend(self._by_dir[prefix])
        return result


def _redistributable_license(m: LicenseMetadata) -> bool:
    relevant = [t for t in m.types if t not in IGNORABLE_TYPES]
    return bool(relevant) and all(t in _REDISTRIBUTABLE for t in relevant)


def types_are_redistributable(types: tuple[str, ...]) -> bool:
    """Report whether every relevant type allows redistribution.

    At least one relevant (not ignorable) type must be present.
    """
    return _redistributable_license(LicenseMetadata(file_path="", types=types))


def redistributable(licenses: list[LicenseMetadata]) -> bool:
    """Report whether a set of licenses allows redistribution.

    The set must contain a license at the module root. Every directory
    that holds licenses must hold at least one redistributable license,
    and no license may be classified as a type that forbids
    redistribution. Unclassified licenses are accepted next to a
    redistributable license in the same directory.
    """
    by_dir: dict[str, list[LicenseMetadata]] = {}
    for m in licenses:
        by_dir.setdefault(_dir_of(m.file_path), []).append(m)
    if "." not in by_dir:
        return False
    for metas in by_dir.values():
        for m in metas:
            if any(t not in _REDISTRIBUTABLE and t not in IGNORABLE_TYPES for t in m.types):
                return False
        if not any(_redistributable_license(m) for m in metas):
            return False
    return True


@dataclass(frozen=True)
class AcceptedLicense:
    """A license type accepted as redistributable, with a reference URL."""

    name: str
    url: str


def accepted_licenses() -> list[AcceptedLicense]:
    """Return the redistributable license types, sorted by name."""
    result = []
    for identifier in REDISTRIBUTABLE_TYPES:
        if identifier in NON_OSI_TYPES:
            url = f"https://spdx.org/licenses/{identifier}.html"
        else:
            url = f"https://opensource.org/licenses/{identifier}"
        result.append(AcceptedLicense(name=identifier, url=url))
    return sorted(result, key=lambda a: a.name)
