"""Build constraints for Go source files.

A file is included in a build context when its name and its
``//go:build`` (or legacy ``// +build``) lines match that context. The
rules follow the go tool:

* ``name_GOOS.go``, ``name_GOARCH.go`` and ``name_GOOS_GOARCH.go``
  (optionally followed by ``_test``) restrict a file by name;
* constraint comments must appear before the package clause, preceded
  only by blank lines and other line comments, and be followed by a
  blank line;
* when a ``//go:build`` line is present it replaces any ``+build`` lines.
"""

import re
from dataclasses import dataclass
from typing import Callable

from pkgindex.models import BuildContext

KNOWN_OS = frozenset(
    [
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos",
        "ios", "js", "linux", "nacl", "netbsd", "openbsd", "plan9", "solaris",
        "wasip1", "windows", "zos",
    ]
)

KNOWN_ARCH = frozenset(
    [
        "386", "amd64", "amd64p32", "arm", "armbe", "arm64", "arm64be",
        "loong64", "mips", "mipsle", "mips64", "mips64le", "mips64p32",
        "mips64p32le", "ppc", "ppc64", "ppc64le", "riscv", "riscv64", "s390",
        "s390x", "sparc", "sparc64", "wasm",
    ]
)

UNIX_OS = frozenset(
    [
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos",
        "ios", "linux", "netbsd", "openbsd", "solaris",
    ]
)

# Release tags satisfied by every context, as for a recent go toolchain.
RELEASE_TAGS = frozenset(f"go1.{i}" for i in range(1, 23))

_TAG_RE = re.compile(r"^[A-Za-z0-9_.]+$")
_PLUS_BUILD_RE = re.compile(r"^//\s*\+build(\s|$)")
_GO_BUILD_RE = re.compile(r"^//go:build(\s|$)")


class ConstraintSyntaxError(ValueError):
    """A //go:build or +build line could not be parsed."""


@dataclass(frozen=True)
class BuildTags:
    """The tags satisfied by a build context.

    Attributes:
        goos: Target operating system.
        goarch: Target architecture.
        cgo_enabled: Whether the "cgo" tag is satisfied.
    """

    goos: str
    goarch: str
    cgo_enabled: bool = True

    @classmethod
    def for_context(cls, bc: BuildContext) -> "BuildTags":
        return cls(goos=bc.goos, goarch=bc.goarch)

    def match(self, tag: str) -> bool:
        """Report whether tag is satisfied, as the go tool's matchTag does."""
        if tag == self.goos or tag == self.goarch:
            return True
        if tag == "unix" and self.goos in UNIX_OS:
            return True
        # android implies linux, illumos implies solaris, ios implies darwin.
        if tag == "linux" and self.goos == "android":
            return True
        if tag == "solaris" and self.goos == "illumos":
            return True
        if tag == "darwin" and self.goos == "ios":
            return True
        if tag == "cgo":
            return self.cgo_enabled
        if tag == "gc":
            return True
        return tag in RELEASE_TAGS


Expr = Callable[[Callable[[str], bool]], bool]


def _tokenize(line: str) -> list[str]:
    tokens: list[str] = []
    i = 0
    while i < len(line):
        c = line[i]
        if c.isspace():
            i += 1
        elif line.startswith("&&", i) or line.startswith("||", i):
            tokens.append(line[i : i + 2])
            i += 2
        elif c in "!()":
            tokens.append(c)
            i += 1
        else:
            j = i
            while j < len(line) and (line[j].isalnum() or line[j] in "_."):
                j += 1
            if j == i:
                raise ConstraintSyntaxError(f"unexpected character {c!r}")
            tokens.append(line[i:j])
            i = j
    return tokens


class _ExprParser:
    """Recursive-descent parser for //go:build expressions."""

    def __init__(self, tokens: list[str]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> str:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else ""

    def take(self) -> str:
        tok = self.peek()
        self.pos += 1
        return tok

    def parse(self) -> Expr:
        if not self.tokens:
            raise ConstraintSyntaxError("empty //go:build expression")
        expr = self.or_expr()
        if self.pos != len(self.tokens):
            raise ConstraintSyntaxError(f"unexpected token {self.peek()!r}")
        return expr

    def or_expr(self) -> Expr:
        left = self.and_expr()
        while self.peek() == "||":
            self.take()
            right = self.and_expr()
            left = (lambda a, b: lambda ok: a(ok) or b(ok))(left, right)
        return left

    def and_expr(self) -> Expr:
        left = self.not_expr()
        while self.peek() == "&&":
            self.take()
            right = self.not_expr()
            left = (lambda a, b: lambda ok: a(ok) and b(ok))(left, right)
        return left

    def not_expr(self) -> Expr:
        if self.peek() == "!":
            self.take()
            inner = self.not_expr()
            return lambda ok: not inner(ok)
        return self.atom()

    def atom(self) -> Expr:
        tok = self.take()
        if tok == "(":
            expr = self.or_expr()
            if self.take() != ")":
                raise ConstraintSyntaxError("missing close paren")
            return expr
        if not tok or not _TAG_RE.match(tok):
            raise ConstraintSyntaxError(f"unexpected token {tok!r}")
        return lambda ok: ok(tok)


def parse_go_build(line: str) -> Expr:
    """Parse a //go:build line into a predicate over tag matchers.

    Raises:
        ConstraintSyntaxError: If the expression is malformed.
    """
    text = line[len("//go:build"):].strip()
    return _ExprParser(_tokenize(text)).parse()


def parse_plus_build(line: str) -> Expr:
    """Parse a legacy "// +build" line.

    Space-separated options are OR'ed, comma-separated terms within an
    option are AND'ed, and "!" negates a term.

    Raises:
        ConstraintSyntaxError: If a term is malformed.
    """
    text = line[2:].strip()[len("+build"):]
    options = []
    for option in text.split():
        terms = []
        for term in option.split(","):
            negated = term.startswith("!")
            name = term[1:] if negated else term
            if not name or not _TAG_RE.match(name) or name.startswith("!"):
                raise ConstraintSyntaxError(f"invalid +build term {term!r}")
            terms.append((name, negated))
        options.append(terms)

    def evaluate(ok: Callable[[str], bool]) -> bool:
        return any(all(ok(name) != negated for name, negated in terms) for terms in options)

    return evaluate


def header_constraint_lines(source: bytes) -> list[str]:
    """Return the comment lines that can carry build constraints.

    Only line comments before the package clause that are followed by a
    blank line qualify. Block comments may appear in the header but never
    carry constraints.
    """
    lines = source.decode("utf-8", errors="replace").splitlines()
    header: list[str] = []
    end = 0
    in_block = False
    for line in lines:
        stripped = line.strip()
        if in_block:
            if "*/" in stripped:
                in_block = False
            continue
        if not stripped:
            end = len(header)
            header.append(stripped)
            continue
        if stripped.startswith("//"):
            header.append(stripped)
            continue
        if stripped.startswith("/*"):
            if "*/" not in stripped[2:]:
                in_block = True
            header.append("")
            continue
        break
    return [line for line in header[:end] if line.startswith("//")]


def match_file_name(name: str, tags: BuildTags) -> bool:
    """Report whether the file name is compatible with the build tags."""
    if name.startswith("_") or name.startswith("."):
        return False
    stem = name.split(".", 1)[0]
    i = stem.find("_")
    if i < 0:
        return True
    parts = stem[i:].split("_")
    if parts and parts[-1] == "test":
        parts = parts[:-1]
    n = len(parts)
    if n >= 2 and parts[-2] in KNOWN_OS and parts[-1] in KNOWN_ARCH:
        return tags.match(parts[-2]) and tags.match(parts[-1])
    if n >= 1 and (parts[-1] in KNOWN_OS or parts[-1] in KNOWN_ARCH):
        return tags.match(parts[-1])
    return True


def match_file(name: str, source: bytes, tags: BuildTags) -> bool:
    """Report whether a .go file is included under the build tags.

    Args:
        name: Base name of the file.
        source: File contents.
        tags: Tags of the build context.

    Raises:
        ConstraintSyntaxError: If a constraint line is malformed.
    """
    if not match_file_name(name, tags):
        return False
    go_build = None
    plus_build = []
    for line in header_constraint_lines(source):
        if _GO_BUILD_RE.match(line):
            if go_build is not None:
                raise ConstraintSyntaxError("multiple //go:build lines")
            go_build = parse_go_build(line)
        elif _PLUS_BUILD_RE.match(line):
            plus_build.append(parse_plus_build(line))
    if go_build is not None:
        return go_build(tags.match)
    return all(expr(tags.match) for expr in plus_build)
