"""Inference of source repository URLs from module paths.

Only hosts whose module paths map to repositories by pattern are
handled; no network requests are made.
"""

import re
from typing import Optional

from pkgindex.modpath import STDLIB_MODULE_PATH

_ELEM = r"[a-zA-Z0-9_.\-]+"

_PATTERNS = (
    re.compile(rf"^(?P<repo>github\.com/{_ELEM}/{_ELEM})"),
    re.compile(rf"^(?P<repo>bitbucket\.org/{_ELEM}/{_ELEM})"),
    re.compile(rf"^(?P<repo>gitlab\.com/{_ELEM}/{_ELEM})"),
    re.compile(rf"^(?P<repo>codeberg\.org/{_ELEM}/{_ELEM})"),
    re.compile(rf"^(?P<repo>git\.sr\.ht/~{_ELEM}/{_ELEM})"),
    re.compile(r"^(?P<repo>[^./]+\.googlesource\.com/[^./]+)"),
)

_GOLANG_X_RE = re.compile(rf"^golang\.org/x/(?P<name>{_ELEM})")
_GOPKGIN_USER_RE = re.compile(r"^gopkg\.in/(?P<user>[^/.]+)/(?P<pkg>[^/.]+)\.v\d+")
_GOPKGIN_RE = re.compile(r"^gopkg\.in/(?P<pkg>[^/.]+)\.v\d+")


def repository_url(module_path: str) -> Optional[str]:
    """Return the URL of the repository holding module_path, or None.

    >>> repository_url("github.com/pkg/errors/v2")
    'https://github.com/pkg/errors'
    """
    if module_path == STDLIB_MODULE_PATH:
        return "https://go.googlesource.com/go"
    m = _GOLANG_X_RE.match(module_path)
    if m is not None:
        return f"https://go.googlesource.com/{m.group('name')}"
    m = _GOPKGIN_USER_RE.match(module_path)
    if m is not None:
        return f"https://github.com/{m.group('user')}/{m.group('pkg')}"
    m = _GOPKGIN_RE.match(module_path)
    if m is not None:
        return f"https://github.com/go-{m.group('pkg')}/{m.group('pkg')}"
    for pattern in _PATTERNS:
        m = pattern.match(module_path)
        if m is not None:
            repo = m.group("repo")
            if repo.endswith(".git"):
                repo = repo[: -len(".git")]
            return f"https://{repo}"
    return None
