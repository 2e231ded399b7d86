"""
Unit tests for environment driven settings.
"""
from pathlib import Path

import pytest

from vfiles.config import DEFAULT_LFS_TRACK_PATTERNS, Settings, get_settings


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.repo_mode == "worktree"
        assert settings.upload_chunk_size == 5 * 1024 * 1024
        assert settings.allowed_path_prefixes == []
        assert "*.png" in settings.git_lfs_track_patterns

    def test_environment(self, fresh_settings, monkeypatch, tmp_path):
        monkeypatch.setenv("REPO_PATH", str(tmp_path / "store.git"))
        monkeypatch.setenv("REPO_MODE", "HEADLESS")
        monkeypatch.setenv("MAX_FILE_SIZE", "1024")
        monkeypatch.setenv("ENABLE_GIT_LFS", "false")
        monkeypatch.setenv("ALLOWED_FILE_TYPES", "png, jpg ,,")
        monkeypatch.setenv("GIT_LFS_TRACK_PATTERNS", "*.bin")

        settings = fresh_settings()

        assert settings.repo_path == Path(tmp_path / "store.git").resolve()
        assert settings.repo_mode == "headless"
        assert settings.max_file_size == 1024
        assert settings.enable_git_lfs is False
        assert settings.allowed_file_types == ["png", "jpg"]
        assert settings.git_lfs_track_patterns == ["*.bin"]

    def test_unset_lists_use_defaults(self, fresh_settings, monkeypatch):
        monkeypatch.delenv("GIT_LFS_TRACK_PATTERNS", raising=False)
        assert fresh_settings().git_lfs_track_patterns == DEFAULT_LFS_TRACK_PATTERNS

    def test_cached(self, fresh_settings):
        assert fresh_settings() is fresh_settings()
