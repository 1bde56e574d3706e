"""Loading a Go package under one build context.

The loader receives the .go files of a single directory, keeps the files
that match a build context and turns them into a :class:`Package`. It
never reads the archive itself; the processor hands it file contents that
are already known to be within the size limit.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pkgindex import dochtml, modpath
from pkgindex.config import Limits
from pkgindex.constraints import BuildTags, ConstraintSyntaxError, match_file
from pkgindex.errors import ModuleTooLarge, PackageDocumentationHTMLTooLarge
from pkgindex.gosource import GoFile, GoSyntaxError, parse_file
from pkgindex.models import BuildContext, Package

logger = logging.getLogger(__name__)


class BadPackageError(Exception):
    """The files of a directory do not make up a valid package.

    This happens when a file fails to parse, has a malformed build
    constraint, or when the files declare different package names.
    """


@dataclass
class LoadedPackage:
    """Result of loading a package under one build context.

    Attributes:
        package: The package.
        doc_error: Set when the documentation was too large and has been
            replaced by a placeholder.
    """

    package: Package
    doc_error: Optional[PackageDocumentationHTMLTooLarge] = None


def matching_files(files: dict[str, bytes], bc: BuildContext) -> dict[str, bytes]:
    """Return the files that are part of the build for bc.

    Args:
        files: Base file name to contents.
        bc: Build context.

    Raises:
        BadPackageError: If a build constraint cannot be parsed.
    """
    tags = BuildTags.for_context(bc)
    matched = {}
    for name, contents in files.items():
        try:
            if match_file(name, contents, tags):
                matched[name] = contents
        except ConstraintSyntaxError as e:
            raise BadPackageError(f"{name}: {e}") from e
    return matched


def _merge_doc(go_files: list[GoFile]) -> str:
    docs = [f.doc for f in sorted(go_files, key=lambda f: f.filename) if f.doc]
    return "\n".join(docs)


def load_package_with_build_context(
    module_path: str,
    inner_path: str,
    files: dict[str, bytes],
    bc: BuildContext,
    limits: Limits,
) -> Optional[LoadedPackage]:
    """Load the package in directory inner_path for one build context.

    Args:
        module_path: Module path, or "std" for the standard library.
        inner_path: Directory of the package relative to the module root.
        files: Base name to contents of every .go file in the directory.
        bc: Build context to load under.
        limits: Processing ceilings.

    Returns:
        The loaded package, or None if no non-test file matches bc.

    Raises:
        BadPackageError: If the matching files are not a valid package.
        ModuleTooLarge: If the package has too many imports.
    """
    matched = matching_files(files, bc)

    go_files: list[GoFile] = []
    package_name = None
    package_name_file = None
    for name in sorted(matched):
        try:
            parsed = parse_file(name, matched[name])
        except GoSyntaxError as e:
            raise BadPackageError(str(e)) from e
        if parsed.is_test:
            continue
        go_files.append(parsed)
        if package_name is None:
            package_name, package_name_file = parsed.package_name, name
        elif parsed.package_name != package_name:
            raise BadPackageError(
                f"found packages {package_name} ({package_name_file}) and "
                f"{parsed.package_name} ({name}) in {inner_path}"
            )
    if not go_files:
        return None

    import_path = modpath.package_path(module_path, inner_path)
    imports = sorted({spec.path for f in go_files for spec in f.imports})
    if len(imports) > limits.max_imports_per_package:
        raise ModuleTooLarge(
            f"{len(imports)} imports found in package {import_path!r}; "
            f"exceeds limit {limits.max_imports_per_package} for imports per package"
        )

    doc = _merge_doc(go_files)
    decls = [d for f in go_files for d in f.decls]
    doc_error = None
    try:
        html = dochtml.render(
            import_path,
            doc,
            decls,
            limits.max_documentation_html,
            all_decls=module_path == modpath.STDLIB_MODULE_PATH and inner_path == "builtin",
        )
    except PackageDocumentationHTMLTooLarge as e:
        logger.warning("Documentation of %s (%s) is too large: %s", import_path, bc, e)
        html = dochtml.TOO_LARGE_HTML
        doc_error = e

    package = Package(
        path=import_path,
        name=package_name,
        synopsis=dochtml.synopsis(doc),
        documentation_html=html,
        imports=imports,
        goos=bc.goos,
        goarch=bc.goarch,
        v1_path=modpath.v1_path(import_path, module_path),
    )
    return LoadedPackage(package=package, doc_error=doc_error)
