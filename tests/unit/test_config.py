"""Unit tests for the run configuration."""

import os
from pathlib import Path
from unittest import mock

import pytest

from vigil.config import ImportMode, RunConfig
from vigil.domain.errors import ConfigurationError
from vigil.domain.marks import BUILTIN_MARKS

# pylint: disable=redefined-outer-name


@pytest.fixture()
def clean_env(monkeypatch):
    """Remove every VIGIL_* variable for the duration of the test."""
    with mock.patch.dict(os.environ):
        for key in [k for k in os.environ if k.startswith("VIGIL_")]:
            monkeypatch.delenv(key)
        yield monkeypatch


def test_defaults() -> None:
    """Test the default discovery rules."""
    config = RunConfig()
    assert config.roots == (".",)
    assert config.include_patterns == ("test_*.py", "*_test.py")
    assert config.function_prefix == "test"
    assert config.class_prefix == "Test"
    assert config.import_mode is ImportMode.PREPEND
    assert "__pycache__" in config.exclude_dirs


def test_string_root_is_wrapped() -> None:
    """Test that a single root string becomes a one-element tuple."""
    assert RunConfig(roots="tests").roots == ("tests",)  # type: ignore[arg-type]


def test_empty_roots_rejected() -> None:
    """Test that at least one root is required."""
    with pytest.raises(ConfigurationError):
        RunConfig(roots=())


def test_import_mode_from_string() -> None:
    """Test that import modes may be given by value."""
    assert RunConfig(import_mode="importlib").import_mode is ImportMode.IMPORTLIB  # type: ignore[arg-type]
    assert ImportMode.IMPORTLIB.collision_tolerant
    assert not ImportMode.PREPEND.collision_tolerant


def test_unknown_import_mode() -> None:
    """Test that an unknown import mode is a configuration error."""
    with pytest.raises(ConfigurationError, match="unknown import mode 'magic'"):
        RunConfig(import_mode="magic")  # type: ignore[arg-type]


def test_registered_marks_include_builtins() -> None:
    """Test that configured marks extend the builtin ones."""
    marks = RunConfig(markers={"slow": "slow tests"}).registered_marks
    assert marks["slow"] == "slow tests"
    assert set(BUILTIN_MARKS) <= set(marks)


def test_root_paths_strip_node_ids(tmp_path: Path) -> None:
    """Test that node-id roots contribute only their path part."""
    target = tmp_path / "test_a.py"
    config = RunConfig(roots=(f"{target}::TestX::test_y",))
    assert config.root_paths == [target.resolve()]
    assert config.resolved_rootdir() == tmp_path.resolve()


def test_rootdir_is_common_parent(tmp_path: Path) -> None:
    """Test that the rootdir defaults to the roots' common ancestor."""
    (tmp_path / "a" / "x").mkdir(parents=True)
    (tmp_path / "b").mkdir()
    config = RunConfig(roots=(str(tmp_path / "a" / "x"), str(tmp_path / "b")))
    assert config.resolved_rootdir() == tmp_path.resolve()
    assert config.with_overrides(rootdir=tmp_path / "a").resolved_rootdir() == (
        tmp_path / "a"
    ).resolve()


class TestFromEnv:
    """Tests for RunConfig.from_env()."""

    @staticmethod
    def test_unset_environment_gives_defaults(clean_env) -> None:
        """Test that no variables means a default configuration."""
        assert RunConfig.from_env() == RunConfig()

    @staticmethod
    def test_reads_variables(clean_env, tmp_path: Path) -> None:
        """Test that every supported variable is honoured."""
        clean_env.setenv("VIGIL_ROOTS", "tests, more_tests")
        clean_env.setenv("VIGIL_MARK_EXPR", "not slow")
        clean_env.setenv("VIGIL_KEYWORD_EXPR", "login")
        clean_env.setenv("VIGIL_IMPORT_MODE", " IMPORTLIB ")
        clean_env.setenv("VIGIL_MARKERS", "slow,db")
        clean_env.setenv("VIGIL_STRICT_MARKERS", "yes")
        clean_env.setenv("VIGIL_LOG_PATH", str(tmp_path / "vigil.log"))

        config = RunConfig.from_env()

        assert config.roots == ("tests", "more_tests")
        assert config.mark_expression == "not slow"
        assert config.keyword_expression == "login"
        assert config.import_mode is ImportMode.IMPORTLIB
        assert set(config.markers) == {"slow", "db"}
        assert config.strict_markers is True
        assert config.log_path == tmp_path / "vigil.log"

    @staticmethod
    def test_flight_recorder_uses_default_path(clean_env, tmp_path: Path) -> None:
        """Test that enabling the recorder without a path uses the user log dir."""
        clean_env.setenv("VIGIL_FLIGHT_RECORDER", "1")
        with mock.patch(
            "vigil.config.user_log_dir", return_value=str(tmp_path)
        ) as user_log_dir:
            config = RunConfig.from_env()
        user_log_dir.assert_called_once()
        assert config.log_path == tmp_path / "latest.log"

    @staticmethod
    def test_invalid_import_mode(clean_env) -> None:
        """Test that a bad import mode in the environment is reported."""
        clean_env.setenv("VIGIL_IMPORT_MODE", "sideways")
        with pytest.raises(ConfigurationError):
            RunConfig.from_env()
