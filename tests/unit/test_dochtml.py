"""Unit tests for documentation rendering."""

import pytest

from pkgindex import dochtml
from pkgindex.errors import PackageDocumentationHTMLTooLarge
from pkgindex.gosource import Decl


@pytest.fixture
def decls():
    return [
        Decl(kind="func", name="New", signature="func New() *T", doc="New returns a T.\n"),
        Decl(kind="func", name="helper", signature="func helper()", doc=""),
        Decl(kind="type", name="T", signature="type T struct{}", doc="T is <special>.\n"),
        Decl(kind="const", name="Max", signature="const Max = 3", doc=""),
    ]


class TestSynopsis:
    """Test extraction of the one-sentence summary."""

    def test_first_sentence(self):
        assert dochtml.synopsis("Package foo does x. It also does y.\n") == "Package foo does x."

    def test_spans_lines(self):
        doc = "Package foo does\nmany things.\n\nSecond paragraph.\n"
        assert dochtml.synopsis(doc) == "Package foo does many things."

    def test_copyright_is_not_a_synopsis(self):
        assert dochtml.synopsis("Copyright 2020 The Authors.\n") == ""

    def test_empty(self):
        assert dochtml.synopsis("") == ""


def test_blocks():
    doc = "Intro line one\nline two.\n\n\tcode()\n\tmore()\n\nOutro.\n"
    assert dochtml.blocks(doc) == [
        dochtml.Block("Intro line one line two."),
        dochtml.Block("\tcode()\n\tmore()", pre=True),
        dochtml.Block("Outro."),
    ]


class TestRender:
    """Test rendering package documentation to HTML."""

    def test_exported_only(self, decls):
        html = dochtml.render("example.com/foo", "Package foo.\n", decls, limit=1 << 20)

        assert "<p>Package foo.</p>" in html
        assert "func New() *T" in html
        assert "helper" not in html
        assert 'id="pkg-const"' in html
        assert html.index("Constants") < html.index("Functions") < html.index("Types")

    def test_all_decls(self, decls):
        html = dochtml.render("builtin", "", decls, limit=1 << 20, all_decls=True)
        assert "func helper()" in html

    def test_escapes_text(self, decls):
        html = dochtml.render("example.com/foo", "a < b\n", decls, limit=1 << 20)
        assert "T is &lt;special&gt;." in html
        assert "a &lt; b" in html

    def test_too_large(self, decls):
        with pytest.raises(PackageDocumentationHTMLTooLarge) as exc_info:
            dochtml.render("example.com/foo", "Package foo.\n", decls, limit=10)
        assert exc_info.value.status == 603
