"""
Service wiring for the HTTP layer.

``get_services`` is the single FastAPI dependency that hands routers their
collaborators; tests override it with an isolated instance per test, the
same way a database session dependency would be swapped.
"""
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends

from vfiles.config import Settings, get_settings
from vfiles.services.downloads import DownloadStreamer
from vfiles.services.locking import RepositoryLockManager
from vfiles.services.repository import RepositoryHandle, RepositoryManager
from vfiles.services.search import SearchEngine
from vfiles.services.uploads import UploadSessionManager


@dataclass
class StorageServices:
    settings: Settings
    locks: RepositoryLockManager
    repositories: RepositoryManager
    uploads: UploadSessionManager
    downloads: DownloadStreamer
    search: SearchEngine

    async def repository(self) -> RepositoryHandle:
        return await self.repositories.get(self.settings.repo_path, self.settings.repo_mode)


def build_services(settings: Settings) -> StorageServices:
    locks = RepositoryLockManager()
    return StorageServices(
        settings=settings,
        locks=locks,
        repositories=RepositoryManager(settings, locks),
        uploads=UploadSessionManager(settings, locks),
        downloads=DownloadStreamer(settings),
        search=SearchEngine(settings),
    )


@lru_cache
def get_services() -> StorageServices:
    return build_services(get_settings())


async def get_repository(services: StorageServices = Depends(get_services)) -> RepositoryHandle:
    return await services.repository()
