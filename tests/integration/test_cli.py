import asyncio

import pytest
from typer.testing import CliRunner

from pkgindex.cli import app
from pkgindex.errors import ProxyError, ProxyTimedOut
from pkgindex.models import PackageVersionState
from pkgindex.persistence import SqlitePersistence

runner = CliRunner()

MODULE = "github.com/my/module"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PKGINDEX_* settings of the environment out of the tests."""
    for name in (
        "PKGINDEX_PROXY_URL",
        "PKGINDEX_DB",
        "PKGINDEX_WORKERS",
        "PKGINDEX_EXCLUDED_FILE",
        "PKGINDEX_DISABLE_PROXY_FETCH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "pkgindex.db"


@pytest.fixture
def mock_fetch(mocker):
    """Mock the _fetch function."""
    return mocker.patch("pkgindex.cli._fetch", return_value=(200, None))


def test_fetch_command(db_path, mock_fetch):
    """Test the fetch command with a successful fetch."""
    result = runner.invoke(
        app, ["fetch", MODULE, "v1.0.0", "--db", str(db_path), "--proxy", "http://localhost:3000/"]
    )

    assert result.exit_code == 0
    assert f"{MODULE}@v1.0.0: status 200" in result.stdout
    config, module_path, version = mock_fetch.call_args.args
    assert (module_path, version) == (MODULE, "v1.0.0")
    assert config.db_path == db_path
    assert config.proxy_url == "http://localhost:3000"


def test_fetch_command_defaults_to_latest(db_path, mock_fetch):
    """Test that the version argument is optional."""
    result = runner.invoke(app, ["fetch", MODULE, "--db", str(db_path)])

    assert result.exit_code == 0
    assert mock_fetch.call_args.args[2] == "latest"


def test_fetch_command_retryable_failure(db_path, mocker):
    """Test that a retryable failure exits with 1."""
    mocker.patch(
        "pkgindex.cli._fetch", return_value=(550, ProxyTimedOut("proxy [timed] out"))
    )
    result = runner.invoke(app, ["fetch", MODULE, "v1.0.0", "--db", str(db_path)])

    assert result.exit_code == 1
    assert "status 550" in result.stdout
    assert "proxy [timed] out" in result.stdout


def test_fetch_command_terminal_failure(db_path, mocker):
    """Test that a failure that will not be retried exits with 0."""
    mocker.patch("pkgindex.cli._fetch", return_value=(404, None))
    result = runner.invoke(app, ["fetch", MODULE, "v1.0.0", "--db", str(db_path)])

    assert result.exit_code == 0
    assert "status 404" in result.stdout


def test_fetch_command_disable_proxy_fetch(db_path, mock_fetch):
    """Test that --disable-proxy-fetch reaches the configuration."""
    runner.invoke(app, ["fetch", MODULE, "v1.0.0", "--db", str(db_path), "--disable-proxy-fetch"])
    assert mock_fetch.call_args.args[0].disable_proxy_fetch


def test_fetch_command_missing_excluded_file(db_path, tmp_path, mock_fetch):
    """Test that a missing exclusion file is a usage error."""
    result = runner.invoke(
        app,
        ["fetch", MODULE, "--db", str(db_path), "--excluded", str(tmp_path / "missing.txt")],
    )

    assert result.exit_code == 2
    mock_fetch.assert_not_called()


def test_fetch_command_bad_environment(db_path, mock_fetch, monkeypatch):
    """Test that an unparsable setting exits with 2."""
    monkeypatch.setenv("PKGINDEX_MAX_FILE_SIZE", "big")
    result = runner.invoke(app, ["fetch", MODULE, "--db", str(db_path)])

    assert result.exit_code == 2
    mock_fetch.assert_not_called()


def test_requeue_command(db_path, mocker):
    """Test the requeue command with one retryable failure."""
    mock_requeue = mocker.patch(
        "pkgindex.cli._requeue",
        return_value={"example.com/a@v1.0.0": 200, "example.com/b@v1.0.0": 551},
    )
    result = runner.invoke(
        app, ["requeue", "--limit", "5", "--workers", "3", "--db", str(db_path)]
    )

    assert result.exit_code == 1
    assert "Fetched 2 versions" in result.stdout
    assert "example.com/a@v1.0.0" in result.stdout
    assert "551" in result.stdout
    config, limit = mock_requeue.call_args.args
    assert limit == 5
    assert config.workers == 3


def test_requeue_command_nothing_to_do(db_path, mocker):
    """Test the requeue command when no version is due."""
    mocker.patch("pkgindex.cli._requeue", return_value={})
    result = runner.invoke(app, ["requeue", "--db", str(db_path)])

    assert result.exit_code == 0
    assert "Nothing to fetch" in result.stdout


def test_enqueue_command(db_path, mocker):
    """Test the enqueue command."""
    mock_enqueue = mocker.patch("pkgindex.cli._enqueue", return_value=3)
    result = runner.invoke(app, ["enqueue", MODULE, "--db", str(db_path)])

    assert result.exit_code == 0
    assert f"Recorded 3 new versions of {MODULE}" in result.stdout
    assert mock_enqueue.call_args.args[1] == MODULE


def test_enqueue_command_failure(db_path, mocker):
    """Test the enqueue command when the proxy fails."""
    mocker.patch("pkgindex.cli._enqueue", side_effect=ProxyError("unexpected status 500"))
    result = runner.invoke(app, ["enqueue", MODULE, "--db", str(db_path)])

    assert result.exit_code == 1


def test_state_command(db_path):
    """Test the state command against a real store."""
    store = SqlitePersistence(db_path)
    asyncio.run(
        store.upsert_version_state(
            MODULE,
            "v1.0.0",
            290,
            go_mod_path=MODULE,
            package_states=[PackageVersionState(f"{MODULE}/bad", 604, "bad package")],
        )
    )

    result = runner.invoke(app, ["state", MODULE, "v1.0.0", "--db", str(db_path)])

    assert result.exit_code == 0
    assert f"{MODULE}@v1.0.0" in result.stdout
    assert "Status: 290" in result.stdout
    assert "Tries: 1" in result.stdout
    assert f"go.mod path: {MODULE}" in result.stdout
    assert "bad package" in result.stdout


def test_state_command_missing(db_path):
    """Test the state command for a version that was never recorded."""
    result = runner.invoke(app, ["state", MODULE, "v1.0.0", "--db", str(db_path)])

    assert result.exit_code == 1


def test_licenses_command():
    """Test listing the accepted licenses."""
    result = runner.invoke(app, ["licenses"])

    assert result.exit_code == 0
    assert "Accepted licenses" in result.stdout
    assert "ISC" in result.stdout
    assert "MIT" in result.stdout
