"""A small Go source reader.

Only what is needed to document a package is parsed: the package
clause, the imports and the top-level declarations with their doc
comments and signatures. Function bodies and initializers are skipped by
balancing brackets over the token stream, so the lexer still has to
understand every literal and comment form of the language.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

# Token kinds.
IDENT = "ident"
INT = "int"
FLOAT = "float"
IMAG = "imag"
CHAR = "char"
STRING = "string"
OP = "op"
COMMENT = "comment"
SEMI = ";"
EOF = "eof"

KEYWORDS = frozenset(
    [
        "break", "case", "chan", "const", "continue", "default", "defer",
        "else", "fallthrough", "for", "func", "go", "goto", "if", "import",
        "interface", "map", "package", "range", "return", "select", "struct",
        "switch", "type", "var",
    ]
)

_OPERATORS = sorted(
    [
        "<<=", ">>=", "&^=", "...", "&&", "||", "<-", "++", "--", "==", "!=",
        "<=", ">=", ":=", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "<<",
        ">>", "&^", "+", "-", "*", "/", "%", "&", "|", "^", "<", ">", "=", "!",
        "~", "(", ")", "[", "]", "{", "}", ",", ";", ".", ":",
    ],
    key=len,
    reverse=True,
)

# A newline after one of these ends the statement.
_SEMI_AFTER_OPS = frozenset(["++", "--", ")", "]", "}"])
_SEMI_AFTER_KEYWORDS = frozenset(["break", "continue", "fallthrough", "return"])

_DIRECTIVE_RE = re.compile(r"^(line |extern |export |[a-z0-9]+:[a-z0-9])")


class GoSyntaxError(ValueError):
    """The file is not syntactically valid Go."""

    def __init__(self, filename: str, line: int, msg: str) -> None:
        super().__init__(f"{filename}:{line}: {msg}")
        self.filename = filename
        self.line = line


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    start: int
    end: int
    line: int
    end_line: int


def _is_letter(c: str) -> bool:
    return c == "_" or c.isalpha()


def _is_ident_char(c: str) -> bool:
    return c == "_" or c.isalnum()


class Lexer:
    """Turns Go source text into tokens, inserting semicolons.

    Comments are returned as COMMENT tokens so that the parser can attach
    doc comments to declarations.
    """

    def __init__(self, src: str, filename: str = "") -> None:
        self.src = src
        self.filename = filename
        self.pos = 0
        self.line = 1
        self._insert_semi = False

    def error(self, msg: str) -> GoSyntaxError:
        return GoSyntaxError(self.filename, self.line, msg)

    def tokens(self) -> list[Token]:
        out: list[Token] = []
        while True:
            tok = self._next()
            out.append(tok)
            if tok.kind == EOF:
                return out

    def _semi(self, value: str = "\n") -> Token:
        self._insert_semi = False
        return Token(SEMI, value, self.pos, self.pos, self.line, self.line)

    def _next(self) -> Token:
        src = self.src
        while self.pos < len(src):
            c = src[self.pos]
            if c == "\n":
                if self._insert_semi:
                    tok = self._semi()
                    self.pos += 1
                    self.line += 1
                    return tok
                self.pos += 1
                self.line += 1
            elif c in " \t\r\ufeff":
                self.pos += 1
            else:
                break
        if self.pos >= len(src):
            if self._insert_semi:
                return self._semi("")
            return Token(EOF, "", self.pos, self.pos, self.line, self.line)

        start, line = self.pos, self.line
        c = src[start]

        if src.startswith("//", start):
            if self._insert_semi:
                return self._semi()
            end = src.find("\n", start)
            if end < 0:
                end = len(src)
            self.pos = end
            return Token(COMMENT, src[start:end], start, end, line, line)

        if src.startswith("/*", start):
            end = src.find("*/", start + 2)
            if end < 0:
                raise self.error("comment not terminated")
            end += 2
            text = src[start:end]
            newlines = text.count("\n")
            if newlines and self._insert_semi:
                return self._semi()
            self.pos = end
            self.line += newlines
            return Token(COMMENT, text, start, end, line, self.line)

        if _is_letter(c):
            end = start + 1
            while end < len(src) and _is_ident_char(src[end]):
                end += 1
            word = src[start:end]
            self.pos = end
            self._insert_semi = word not in KEYWORDS or word in _SEMI_AFTER_KEYWORDS
            return Token(IDENT, word, start, end, line, line)

        if c.isdigit() or (c == "." and start + 1 < len(src) and src[start + 1].isdigit()):
            return self._number(start, line)

        if c == '"':
            return self._quoted(start, line, '"', STRING)
        if c == "'":
            return self._quoted(start, line, "'", CHAR)
        if c == "`":
            end = src.find("`", start + 1)
            if end < 0:
                raise self.error("raw string literal not terminated")
            end += 1
            self.pos = end
            self.line += src.count("\n", start, end)
            self._insert_semi = True
            return Token(STRING, src[start:end], start, end, line, self.line)

        for op in _OPERATORS:
            if src.startswith(op, start):
                self.pos = start + len(op)
                self._insert_semi = op in _SEMI_AFTER_OPS
                return Token(OP, op, start, self.pos, line, line)

        raise self.error(f"invalid character {c!r}")

    def _number(self, start: int, line: int) -> Token:
        src = self.src
        end = start
        hex_lit = src.startswith(("0x", "0X"), start)
        exponents = "pP" if hex_lit else "eE"
        while end < len(src):
            ch = src[end]
            if ch.isalnum() or ch == "_":
                end += 1
            elif ch == "." and not src.startswith("..", end):
                end += 1
            elif ch in "+-" and src[end - 1] in exponents:
                end += 1
            else:
                break
        text = src[start:end]
        self.pos = end
        self._insert_semi = True
        if text.endswith("i"):
            kind = IMAG
        elif not hex_lit and ("." in text or "e" in text.lower()):
            kind = FLOAT
        elif hex_lit and ("." in text or "p" in text.lower()):
            kind = FLOAT
        else:
            kind = INT
        return Token(kind, text, start, end, line, line)

    def _quoted(self, start: int, line: int, quote: str, kind: str) -> Token:
        src = self.src
        end = start + 1
        while True:
            if end >= len(src) or src[end] == "\n":
                raise self.error(f"{kind} literal not terminated")
            ch = src[end]
            if ch == "\\":
                end += 2
                continue
            end += 1
            if ch == quote:
                break
        self.pos = end
        self._insert_semi = True
        return Token(kind, src[start:end], start, end, line, line)


def comment_text(comments: list[Token]) -> str:
    """Return the text of a comment group with markers and directives removed."""
    lines: list[str] = []
    for c in comments:
        if c.value.startswith("//"):
            body = c.value[2:]
            if _DIRECTIVE_RE.match(body):
                continue
            if body.startswith(" "):
                body = body[1:]
            lines.append(body.rstrip())
        else:
            body = c.value[2:-2]
            for ln in body.splitlines():
                lines.append(ln.strip().lstrip("*").strip() if ln.strip().startswith("*") else ln.rstrip())
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    text = "\n".join(lines)
    return text + "\n" if text else ""


@dataclass(frozen=True)
class ImportSpec:
    path: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Decl:
    """A top-level declaration.

    Attributes:
        kind: "func", "type", "var" or "const".
        name: Declared name. For var and const specs that declare several
            names, the first one.
        signature: Source text of the declaration without body.
        doc: Doc comment text.
        receiver: Receiver type name of a method, else None.
    """

    kind: str
    name: str
    signature: str
    doc: str = ""
    receiver: Optional[str] = None

    @property
    def exported(self) -> bool:
        if not self.name[:1].isupper():
            return False
        return self.receiver is None or self.receiver[:1].isupper()


@dataclass
class GoFile:
    """The parts of a Go file that matter for documentation."""

    filename: str
    package_name: str
    doc: str = ""
    imports: list[ImportSpec] = field(default_factory=list)
    decls: list[Decl] = field(default_factory=list)

    @property
    def is_test(self) -> bool:
        return self.filename.endswith("_test.go")


class _Parser:
    def __init__(self, src: str, filename: str) -> None:
        self.src = src
        self.filename = filename
        self.toks = Lexer(src, filename).tokens()
        self.i = 0
        # Doc comment groups, keyed by the index of the token they precede.
        self.docs: dict[int, list[Token]] = {}

    def error(self, tok: Token, msg: str) -> GoSyntaxError:
        return GoSyntaxError(self.filename, tok.line, msg)

    def peek(self) -> Token:
        """Return the next non-comment token, recording its doc comment."""
        group: list[Token] = []
        group_start = self.i
        while self.toks[self.i].kind == COMMENT:
            tok = self.toks[self.i]
            if group and tok.line > group[-1].end_line + 1:
                group = []
                group_start = self.i
            group.append(tok)
            self.i += 1
        tok = self.toks[self.i]
        if group and group[-1].end_line == tok.line - 1:
            # A group that starts on the line of the previous token is a
            # trailing comment, not a doc comment.
            prev_line = self.toks[group_start - 1].line if group_start > 0 else 0
            if group[0].line > prev_line:
                self.docs[self.i] = group
        return tok

    def next(self) -> Token:
        tok = self.peek()
        self.i += 1
        return tok

    def take_doc(self, index: int) -> str:
        return comment_text(self.docs.pop(index, []))

    def expect(self, kind: str, value: Optional[str] = None) -> Token:
        tok = self.next()
        if tok.kind != kind or (value is not None and tok.value != value):
            want = value or kind
            raise self.error(tok, f"expected {want!r}, found {tok.value or tok.kind!r}")
        return tok

    def expect_semi(self) -> None:
        tok = self.peek()
        if tok.kind == EOF:
            return
        if tok.kind == OP and tok.value == ";":
            self.i += 1
            return
        self.expect(SEMI)

    def at_semi(self, tok: Token) -> bool:
        return tok.kind == SEMI or (tok.kind == OP and tok.value == ";")

    def parse(self) -> GoFile:
        tok = self.peek()
        if not (tok.kind == IDENT and tok.value == "package"):
            raise self.error(tok, "expected 'package'")
        doc = self.take_doc(self.i)
        self.next()
        name = self.expect(IDENT)
        if name.value == "_":
            raise self.error(name, "invalid package name _")
        self.expect_semi()
        f = GoFile(filename=self.filename, package_name=name.value, doc=doc)

        while True:
            tok = self.peek()
            if tok.kind == IDENT and tok.value == "import":
                self.next()
                self.imports(f)
            else:
                break

        while True:
            tok = self.peek()
            if tok.kind == EOF:
                return f
            if self.at_semi(tok):
                self.next()
                continue
            if tok.kind != IDENT:
                raise self.error(tok, "non-declaration statement outside function body")
            if tok.value == "import":
                raise self.error(tok, "imports must appear before other declarations")
            if tok.value == "func":
                f.decls.append(self.func_decl())
            elif tok.value in ("type", "var", "const"):
                f.decls.extend(self.gen_decl())
            else:
                raise self.error(tok, "non-declaration statement outside function body")

    def imports(self, f: GoFile) -> None:
        tok = self.peek()
        if tok.kind == OP and tok.value == "(":
            self.next()
            while True:
                tok = self.peek()
                if tok.kind == OP and tok.value == ")":
                    self.next()
                    break
                if self.at_semi(tok):
                    self.next()
                    continue
                f.imports.append(self.import_spec())
                tok = self.peek()
                if not (tok.kind == OP and tok.value == ")"):
                    self.expect_semi()
        else:
            f.imports.append(self.import_spec())
        self.expect_semi()

    def import_spec(self) -> ImportSpec:
        tok = self.next()
        name = None
        if tok.kind == IDENT or (tok.kind == OP and tok.value == "."):
            name = tok.value
            tok = self.next()
        if tok.kind != STRING:
            raise self.error(tok, "missing import path")
        path = tok.value[1:-1]
        if not path:
            raise self.error(tok, "invalid import path: empty")
        return ImportSpec(path=path, name=name)

    def skip_balanced(self, open_tok: Token) -> Token:
        """Skip to the token closing open_tok and return it."""
        pairs = {"(": ")", "[": "]", "{": "}"}
        stack = [pairs[open_tok.value]]
        while stack:
            tok = self.next()
            if tok.kind == EOF:
                raise self.error(open_tok, f"unbalanced {open_tok.value!r}")
            if tok.kind != OP:
                continue
            if tok.value in pairs:
                stack.append(pairs[tok.value])
            elif tok.value in (")", "]", "}"):
                if tok.value != stack.pop():
                    raise self.error(tok, f"unexpected {tok.value!r}")
        return tok

    def func_decl(self) -> Decl:
        self.peek()
        doc = self.take_doc(self.i)
        start = self.next()
        receiver = None
        tok = self.peek()
        if tok.kind == OP and tok.value == "(":
            open_tok = self.next()
            first = self.i
            self.skip_balanced(open_tok)
            receiver = self._receiver_type(self.toks[first : self.i - 1])
            if receiver is None:
                raise self.error(open_tok, "method has no receiver type")
        name = self.expect(IDENT)
        end = name.end
        prev = name
        while True:
            tok = self.peek()
            if tok.kind == EOF or self.at_semi(tok):
                break
            if tok.kind == OP and tok.value == "{" and not (
                prev.kind == IDENT and prev.value in ("struct", "interface")
            ):
                self.next()
                self.skip_balanced(tok)
                break
            self.next()
            if tok.kind == OP and tok.value in ("(", "[", "{"):
                tok = self.skip_balanced(tok)
            end = tok.end
            prev = tok
        self.expect_semi()
        signature = self.src[start.start : end]
        return Decl(kind="func", name=name.value, signature=signature, doc=doc, receiver=receiver)

    @staticmethod
    def _receiver_type(toks: list[Token]) -> Optional[str]:
        depth = 0
        name = None
        for tok in toks:
            if tok.kind == OP and tok.value in ("[", "("):
                depth += 1
            elif tok.kind == OP and tok.value in ("]", ")"):
                depth -= 1
            elif tok.kind == IDENT and depth == 0:
                name = tok.value
        return name

    def gen_decl(self) -> list[Decl]:
        self.peek()
        doc = self.take_doc(self.i)
        kw = self.next()
        tok = self.peek()
        if tok.kind == OP and tok.value == "(":
            self.next()
            decls = []
            while True:
                tok = self.peek()
                if tok.kind == OP and tok.value == ")":
                    self.next()
                    break
                if self.at_semi(tok):
                    self.next()
                    continue
                decls.append(self.spec(kw.value, self.take_doc(self.i) or doc, grouped=True))
            self.expect_semi()
            return decls
        decl = self.spec(kw.value, doc, grouped=False, start=kw)
        self.expect_semi()
        return [decl]

    def spec(self, kind: str, doc: str, grouped: bool, start: Optional[Token] = None) -> Decl:
        name = self.expect(IDENT)
        first = start or name
        end = name.end
        while True:
            tok = self.peek()
            if tok.kind == EOF or self.at_semi(tok):
                break
            if grouped and tok.kind == OP and tok.value == ")":
                break
            self.next()
            if tok.kind == OP and tok.value in ("(", "[", "{"):
                tok = self.skip_balanced(tok)
            end = tok.end
        text = self.src[first.start : end]
        if grouped:
            text = f"{kind} {text}"
        return Decl(kind=kind, name=name.value, signature=text, doc=doc)


def parse_file(filename: str, source: bytes) -> GoFile:
    """Parse a Go source file.

    Args:
        filename: Name used in error messages and to recognize test files.
        source: Raw file contents, which must be UTF-8.

    Returns:
        The parsed file.

    Raises:
        GoSyntaxError: If the file is not valid UTF-8 or not valid Go.
    """
    try:
        src = source.decode("utf-8")
    except UnicodeDecodeError as e:
        raise GoSyntaxError(filename, 1, f"invalid UTF-8 encoding: {e}") from e
    if "\x00" in src:
        raise GoSyntaxError(filename, 1, "invalid NUL character")
    return _Parser(src, filename).parse()
