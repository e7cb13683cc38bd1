"""Tests for configuration management."""

import re
from pathlib import Path

import pytest

from .lib import (
    EnvConfig,
    EnvVar,
    _find_repo_root,
    get_available_llm_providers,
    get_blob_dir,
    get_data_dir,
    get_db_path,
    get_environment,
    get_environment_info,
    get_public_base_url,
    list_environment_variables,
    use_mocks,
)

# =============================================================================
# Tests for get_environment (main interface)
# =============================================================================


class TestGetEnvironment:
    """Tests for the unified get_environment interface."""

    @pytest.mark.unit
    def test_returns_default_when_not_set(self, monkeypatch):
        """Returns default value when env var is not set."""
        monkeypatch.delenv("IMAGE_MAX_CONCURRENCY", raising=False)
        assert get_environment(EnvVar.IMAGE_MAX_CONCURRENCY) == 3

    @pytest.mark.unit
    def test_override_takes_priority(self, monkeypatch):
        """Override parameter takes highest priority."""
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "9")
        assert get_environment(EnvVar.RETRY_MAX_ATTEMPTS, override=5) == 5

    @pytest.mark.unit
    def test_env_var_overrides_default(self, monkeypatch):
        """Environment variable overrides default value."""
        monkeypatch.setenv("REFINE_MAX_ITERATIONS", "4")
        result = get_environment(EnvVar.REFINE_MAX_ITERATIONS)
        assert result == 4
        assert isinstance(result, int)

    @pytest.mark.unit
    def test_float_type_conversion(self, monkeypatch):
        """Float type conversion from string."""
        monkeypatch.setenv("RETRY_BASE_DELAY", "0.25")
        result = get_environment(EnvVar.RETRY_BASE_DELAY)
        assert result == 0.25
        assert isinstance(result, float)

    @pytest.mark.unit
    def test_bool_type_conversion_true(self, monkeypatch):
        """Boolean type conversion for true values."""
        for value in ("true", "1", "yes", "TRUE", "Yes"):
            monkeypatch.setenv("LABEL_USE_MOCKS", value)
            assert get_environment(EnvVar.LABEL_USE_MOCKS) is True

    @pytest.mark.unit
    def test_bool_type_conversion_false(self, monkeypatch):
        """Boolean type conversion for false values."""
        for value in ("false", "0", "no", "FALSE", "No"):
            monkeypatch.setenv("LABEL_USE_MOCKS", value)
            assert get_environment(EnvVar.LABEL_USE_MOCKS) is False

    @pytest.mark.unit
    def test_path_type_conversion(self, monkeypatch, tmp_path):
        """Path variables are returned as Path objects."""
        monkeypatch.setenv("LABEL_DB_PATH", str(tmp_path / "x.db"))
        assert get_environment(EnvVar.LABEL_DB_PATH) == tmp_path / "x.db"

    @pytest.mark.unit
    def test_none_default_for_api_keys(self, monkeypatch):
        """API keys default to None."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert get_environment(EnvVar.ANTHROPIC_API_KEY) is None

    @pytest.mark.unit
    def test_invalid_int_returns_default(self, monkeypatch):
        """Invalid integer falls back to default."""
        monkeypatch.setenv("IMAGE_MAX_CONCURRENCY", "many")
        assert get_environment(EnvVar.IMAGE_MAX_CONCURRENCY) == 3


class TestGetEnvironmentInfo:
    """Tests for environment metadata lookup."""

    @pytest.mark.unit
    def test_returns_env_config(self):
        info = get_environment_info(EnvVar.RETRY_MAX_DELAY)
        assert isinstance(info, EnvConfig)
        assert info.name == "RETRY_MAX_DELAY"
        assert info.var_type is float
        assert info.category == "pipeline"

    @pytest.mark.unit
    def test_description_present(self):
        for var in EnvVar:
            assert get_environment_info(var).description


class TestListEnvironmentVariables:
    """Tests for category filtering."""

    @pytest.mark.unit
    def test_returns_all_variables(self):
        assert len(list_environment_variables()) == len(list(EnvVar))

    @pytest.mark.unit
    def test_filter_by_category(self):
        storage = list_environment_variables("storage")
        assert EnvVar.LABEL_DB_PATH in storage
        assert EnvVar.OPENAI_API_KEY not in storage


# =============================================================================
# Tests for path helpers
# =============================================================================


class TestStoragePaths:
    """Tests for data, database and blob path resolution."""

    @pytest.mark.unit
    def test_data_dir_override(self, tmp_path):
        assert get_data_dir(tmp_path) == tmp_path

    @pytest.mark.unit
    def test_data_dir_default_finds_repo_root(self, tmp_path, monkeypatch):
        repo_root = tmp_path / "fake_repo"
        repo_root.mkdir()
        (repo_root / ".gitignore").touch()
        subdir = repo_root / "src" / "submodule"
        subdir.mkdir(parents=True)
        monkeypatch.chdir(subdir)
        monkeypatch.delenv("LABEL_DATA_DIR", raising=False)

        assert get_data_dir() == repo_root / ".data"

    @pytest.mark.unit
    def test_db_path_under_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LABEL_DATA_DIR", str(tmp_path))
        monkeypatch.delenv("LABEL_DB_PATH", raising=False)
        assert get_db_path() == tmp_path / "labels.db"

    @pytest.mark.unit
    def test_blob_dir_env_beats_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LABEL_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("LABEL_BLOB_DIR", str(tmp_path / "elsewhere"))
        assert get_blob_dir() == tmp_path / "elsewhere"

    @pytest.mark.unit
    def test_blob_dir_string_override(self, tmp_path):
        assert get_blob_dir(str(tmp_path)) == Path(tmp_path)

    @pytest.mark.unit
    def test_public_base_url_strips_slash(self, monkeypatch):
        monkeypatch.setenv("LABEL_PUBLIC_BASE_URL", "https://cdn.example.com/")
        assert get_public_base_url() == "https://cdn.example.com"

    @pytest.mark.unit
    def test_public_base_url_unset(self, monkeypatch):
        monkeypatch.delenv("LABEL_PUBLIC_BASE_URL", raising=False)
        assert get_public_base_url() is None


# =============================================================================
# Tests for provider detection and mock selection
# =============================================================================


class TestProviders:
    """Tests for provider availability and mock fallback."""

    @pytest.mark.unit
    def test_providers_from_keys(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert get_available_llm_providers() == ["openai"]

    @pytest.mark.unit
    def test_use_mocks_without_keys(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("LABEL_USE_MOCKS", raising=False)
        assert use_mocks() is True

    @pytest.mark.unit
    def test_use_mocks_flag_wins(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("LABEL_USE_MOCKS", "false")
        assert use_mocks() is False
        assert use_mocks(override=True) is True


# =============================================================================
# Tests for repository root detection
# =============================================================================


class TestFindRepoRoot:
    """Tests for repository root detection."""

    @pytest.mark.unit
    def test_from_subdirectory(self, tmp_path, monkeypatch):
        """Walks up from subdirectory."""
        repo_root = tmp_path / "repo"
        repo_root.mkdir()
        (repo_root / ".gitignore").touch()
        deep_subdir = repo_root / "a" / "b" / "c"
        deep_subdir.mkdir(parents=True)
        monkeypatch.chdir(deep_subdir)

        assert _find_repo_root() == repo_root

    @pytest.mark.unit
    def test_explicit_start_path(self, tmp_path):
        """Accepts explicit start path."""
        repo_root = tmp_path / "explicit_repo"
        repo_root.mkdir()
        (repo_root / ".gitignore").touch()
        subdir = repo_root / "src"
        subdir.mkdir()

        assert _find_repo_root(start_path=subdir) == repo_root

    @pytest.mark.unit
    def test_error_includes_start_path(self, tmp_path):
        """Error message includes the start path."""
        no_repo = tmp_path / "no_git_here"
        no_repo.mkdir()
        if any((p / ".gitignore").exists() for p in no_repo.resolve().parents):
            pytest.skip("Temporary directory lives inside a repository")

        with pytest.raises(RuntimeError, match=re.escape(str(no_repo))):
            _find_repo_root(start_path=no_repo)
