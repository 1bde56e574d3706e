"""Rendering of package documentation.

Doc comments are split into paragraphs and preformatted blocks and then
rendered with a bundled Jinja2 template. The result is plain, escaped
HTML; it is not meant to reproduce any particular site's markup.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from importlib.resources import files

from jinja2 import Environment, Template

from pkgindex.errors import PackageDocumentationHTMLTooLarge
from pkgindex.gosource import Decl

# Replaces documentation whose rendering exceeds the size limit.
TOO_LARGE_HTML = "<p>Documentation is too large to display.</p>"

_GROUP_TITLES = (
    ("const", "Constants"),
    ("var", "Variables"),
    ("func", "Functions"),
    ("type", "Types"),
)

_SENTENCE_END_RE = re.compile(r"([.!?])\s")
_NON_SYNOPSIS_PREFIXES = ("copyright", "all rights", "author")


@dataclass(frozen=True)
class Block:
    text: str
    pre: bool = False


def blocks(doc: str) -> list[Block]:
    """Split a doc comment into paragraphs and preformatted blocks.

    Indented lines form preformatted blocks; other runs of lines separated
    by blank lines form paragraphs.
    """
    out: list[Block] = []
    current: list[str] = []
    current_pre = False

    def flush() -> None:
        if current:
            if current_pre:
                out.append(Block("\n".join(current), pre=True))
            else:
                out.append(Block(" ".join(s.strip() for s in current)))
            current.clear()

    for line in doc.splitlines():
        if not line.strip():
            flush()
            continue
        pre = line[:1] in (" ", "\t")
        if pre != current_pre:
            flush()
            current_pre = pre
        current.append(line)
    flush()
    return out


def synopsis(doc: str) -> str:
    """Return the first sentence of the first paragraph of doc.

    Copyright and authorship notices are not synopses: if the sentence
    starts with one of them, the empty string is returned.
    """
    paragraph = []
    for line in doc.splitlines():
        if not line.strip():
            if paragraph:
                break
            continue
        paragraph.append(line.strip())
    text = " ".join(paragraph)
    m = _SENTENCE_END_RE.search(text + " ")
    if m is not None:
        text = text[: m.start() + 1]
    if text.lower().startswith(_NON_SYNOPSIS_PREFIXES):
        return ""
    return text


@lru_cache(maxsize=1)
def _load_template() -> Template:
    source = files("pkgindex.templates").joinpath("doc.html.j2").read_text(encoding="utf-8")
    env = Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)
    return env.from_string(source)


def render(
    import_path: str, doc: str, decls: list[Decl], limit: int, all_decls: bool = False
) -> str:
    """Render the documentation of a package.

    Only exported declarations are included unless all_decls is set.
    Declarations are grouped by kind and sorted by name.

    Args:
        import_path: Import path of the package.
        doc: Package doc comment.
        decls: Declarations of the package's non-test files.
        limit: Maximum size of the rendered HTML in bytes.
        all_decls: Include unexported declarations too.

    Returns:
        The rendered HTML.

    Raises:
        PackageDocumentationHTMLTooLarge: If the HTML exceeds limit.
    """
    groups = []
    for kind, title in _GROUP_TITLES:
        selected = sorted(
            (d for d in decls if d.kind == kind and (all_decls or d.exported)),
            key=lambda d: (d.receiver or "", d.name),
        )
        groups.append(
            {
                "kind": kind,
                "title": title,
                "decls": [
                    {
                        "kind": d.kind,
                        "name": d.name,
                        "receiver": d.receiver,
                        "signature": d.signature,
                        "blocks": blocks(d.doc),
                    }
                    for d in selected
                ],
            }
        )
    html = _load_template().render(import_path=import_path, overview=blocks(doc), groups=groups)
    size = len(html.encode("utf-8"))
    if size > limit:
        raise PackageDocumentationHTMLTooLarge(
            f"documentation HTML is {size} bytes, exceeds limit of {limit}"
        )
    return html
