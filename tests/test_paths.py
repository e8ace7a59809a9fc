"""Tests for path utilities."""

from pathlib import Path

from partner_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    DEFAULT_DB_FILE,
    resolve_config_dir,
    resolve_db_path,
)


class TestDefaultConfigDir:
    """Test DEFAULT_CONFIG_DIR constant."""

    def test_default_config_dir_is_in_home(self):
        """Default config dir should be in user's home directory."""
        assert Path.home() / ".partner-sync" == DEFAULT_CONFIG_DIR

    def test_default_config_dir_is_path(self):
        """Default config dir should be a Path object."""
        assert isinstance(DEFAULT_CONFIG_DIR, Path)


class TestResolveConfigDir:
    """Test resolve_config_dir function."""

    def test_explicit_path_string(self, tmp_path):
        """Explicit path string should be used."""
        result = resolve_config_dir(str(tmp_path))
        assert result == tmp_path.resolve()

    def test_explicit_path_object(self, tmp_path):
        """Explicit Path object should be used."""
        result = resolve_config_dir(tmp_path)
        assert result == tmp_path.resolve()

    def test_explicit_path_wins_over_env(self, tmp_path, monkeypatch):
        """Explicit path should take precedence over the environment."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path / "env"))
        result = resolve_config_dir(tmp_path / "explicit")
        assert result == (tmp_path / "explicit").resolve()

    def test_env_var_override(self, tmp_path, monkeypatch):
        """Environment variable should override default when no explicit path."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        result = resolve_config_dir(None)
        assert result == tmp_path.resolve()

    def test_default_when_no_explicit_and_no_env(self, monkeypatch):
        """Default should be used when no explicit path and no env var."""
        monkeypatch.delenv(CONFIG_DIR_ENV_VAR, raising=False)
        result = resolve_config_dir(None)
        assert result == DEFAULT_CONFIG_DIR.expanduser().resolve()


class TestResolveDbPath:
    """Test resolve_db_path function."""

    def test_default_inside_config_dir(self, tmp_path):
        """Without db_path the database lives in the config directory."""
        assert resolve_db_path(tmp_path) == tmp_path / DEFAULT_DB_FILE

    def test_relative_path_under_config_dir(self, tmp_path):
        """Relative db_path should be taken relative to the config directory."""
        assert resolve_db_path(tmp_path, "data/sync.db") == tmp_path / "data/sync.db"

    def test_absolute_path_used_as_is(self, tmp_path):
        """Absolute db_path should be used unchanged."""
        target = tmp_path / "elsewhere" / "sync.db"
        assert resolve_db_path(tmp_path / "config", str(target)) == target
