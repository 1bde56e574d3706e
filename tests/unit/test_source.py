"""Unit tests for repository URL inference."""

import pytest

from pkgindex.source import repository_url


@pytest.mark.parametrize(
    "module_path,expected",
    [
        ("std", "https://go.googlesource.com/go"),
        ("github.com/pkg/errors", "https://github.com/pkg/errors"),
        ("github.com/pkg/errors/v2", "https://github.com/pkg/errors"),
        ("github.com/my/repo.git", "https://github.com/my/repo"),
        ("gitlab.com/group/project/sub", "https://gitlab.com/group/project"),
        ("bitbucket.org/owner/repo", "https://bitbucket.org/owner/repo"),
        ("golang.org/x/tools/gopls", "https://go.googlesource.com/tools"),
        ("gopkg.in/yaml.v2", "https://github.com/go-yaml/yaml"),
        ("gopkg.in/check/check.v1", "https://github.com/check/check"),
        ("example.com/mod", None),
    ],
)
def test_repository_url(module_path, expected):
    assert repository_url(module_path) == expected
