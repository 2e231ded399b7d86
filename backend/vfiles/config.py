from pydantic import BaseModel
from functools import lru_cache
from pathlib import Path
import os

MB = 1024 * 1024

DEFAULT_LFS_TRACK_PATTERNS = [
    # images
    "*.png", "*.jpg", "*.jpeg", "*.gif", "*.webp", "*.bmp", "*.ico",
    "*.heic", "*.heif", "*.avif", "*.tiff", "*.tif", "*.psd",
    "*.raw", "*.cr2", "*.nef", "*.arw",
    # video
    "*.mp4", "*.mov", "*.m4v", "*.webm", "*.avi", "*.mkv", "*.wmv", "*.flv",
    # audio
    "*.mp3", "*.wav", "*.flac", "*.aac", "*.m4a", "*.ogg", "*.opus",
    # archives
    "*.zip", "*.7z", "*.rar", "*.tar", "*.gz", "*.bz2", "*.xz", "*.zst", "*.tgz",
    # documents
    "*.pdf", "*.docx", "*.xlsx", "*.pptx", "*.epub",
    # binaries
    "*.exe", "*.dll", "*.so", "*.dylib", "*.bin", "*.apk", "*.dmg", "*.iso",
    "*.ttf", "*.otf", "*.woff", "*.woff2",
    "*.db", "*.sqlite", "*.sqlite3", "*.wasm", "*.jar",
    "*.fbx", "*.glb", "*.blend",
]


class Settings(BaseModel):
    app_name: str = "VFiles"
    cors_origins: list[str] = ["http://localhost:5173"]

    repo_path: Path = Path("data")
    repo_mode: str = "worktree"  # worktree, headless
    git_binary: str = "git"

    max_file_size: int = 1024 * MB
    upload_chunk_size: int = 5 * MB
    upload_max_chunk_size: int = 20 * MB
    upload_temp_dir: Path = Path(".vfiles_uploads")  # must live outside repo_path
    upload_session_ttl_seconds: int = 24 * 60 * 60

    download_cache_dir: Path = Path(".vfiles_download_cache")
    download_cache_ttl_seconds: int = 6 * 60 * 60
    download_cache_sweep_interval_seconds: int = 10 * 60

    enable_git_lfs: bool = True
    git_lfs_track_patterns: list[str] = DEFAULT_LFS_TRACK_PATTERNS

    allowed_file_types: list[str] = []  # empty allows everything
    allowed_path_prefixes: list[str] = []  # empty allows everything

    git_query_cache_enabled: bool = True
    git_query_cache_ttl_seconds: int = 300
    git_query_cache_max_entries: int = 3000

    search_max_results: int = 200
    search_max_content_files: int = 50
    search_max_matches_per_file: int = 5
    search_max_line_length: int = 240

    default_author_name: str = "VFiles User"
    default_author_email: str = "user@vfiles.local"


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "VFiles"),
        cors_origins=_env_list("CORS_ORIGINS", ["http://localhost:5173"]),
        repo_path=Path(os.getenv("REPO_PATH", "data")).resolve(),
        repo_mode=os.getenv("REPO_MODE", "worktree").lower(),
        git_binary=os.getenv("GIT_BINARY", "git"),
        max_file_size=int(os.getenv("MAX_FILE_SIZE", str(1024 * MB))),
        upload_chunk_size=int(os.getenv("UPLOAD_CHUNK_SIZE", str(5 * MB))),
        upload_max_chunk_size=int(os.getenv("UPLOAD_MAX_CHUNK_SIZE", str(20 * MB))),
        upload_temp_dir=Path(os.getenv("UPLOAD_TEMP_DIR", ".vfiles_uploads")).resolve(),
        upload_session_ttl_seconds=int(os.getenv("UPLOAD_SESSION_TTL_SECONDS", str(24 * 60 * 60))),
        download_cache_dir=Path(os.getenv("DOWNLOAD_CACHE_DIR", ".vfiles_download_cache")).resolve(),
        download_cache_ttl_seconds=int(os.getenv("DOWNLOAD_CACHE_TTL_SECONDS", str(6 * 60 * 60))),
        enable_git_lfs=_env_flag("ENABLE_GIT_LFS", True),
        git_lfs_track_patterns=_env_list("GIT_LFS_TRACK_PATTERNS", DEFAULT_LFS_TRACK_PATTERNS),
        allowed_file_types=_env_list("ALLOWED_FILE_TYPES", []),
        allowed_path_prefixes=_env_list("ALLOWED_PATH_PREFIXES", []),
        git_query_cache_enabled=_env_flag("GIT_QUERY_CACHE_ENABLED", True),
        git_query_cache_ttl_seconds=int(os.getenv("GIT_QUERY_CACHE_TTL_SECONDS", "300")),
        git_query_cache_max_entries=int(os.getenv("GIT_QUERY_CACHE_MAX_ENTRIES", "3000")),
        search_max_results=int(os.getenv("SEARCH_MAX_RESULTS", "200")),
        search_max_content_files=int(os.getenv("SEARCH_MAX_CONTENT_FILES", "50")),
        download_cache_sweep_interval_seconds=int(os.getenv("DOWNLOAD_CACHE_SWEEP_INTERVAL_SECONDS", "600")),
        default_author_name=os.getenv("DEFAULT_AUTHOR_NAME", "VFiles User"),
        default_author_email=os.getenv("DEFAULT_AUTHOR_EMAIL", "user@vfiles.local"),
    )
