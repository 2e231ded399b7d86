"""
Settings factory for isolated test repositories.
"""
from pathlib import Path

from vfiles.config import Settings


def make_settings(base: Path, mode: str = "worktree", **overrides) -> Settings:
    """Settings with every writable location under ``base`` and git-lfs off."""
    repo_name = "repo.git" if mode == "headless" else "repo"
    values = dict(
        app_name="VFiles",
        repo_path=base / repo_name,
        repo_mode=mode,
        upload_temp_dir=base / "uploads",
        download_cache_dir=base / "download-cache",
        enable_git_lfs=False,
    )
    values.update(overrides)
    return Settings(**values)
