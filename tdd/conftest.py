"""
Root conftest.py - Shared fixtures for all test types.

This file is automatically loaded by pytest and provides:
- Temporary directories and settings for both repository layouts
- Service containers and repository handles
- FastAPI test client wired to an isolated service container
"""
import shutil
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Add backend and tdd to path for imports
backend_path = Path(__file__).parent.parent / "backend"
tdd_path = Path(__file__).parent
sys.path.insert(0, str(backend_path))
sys.path.insert(0, str(tdd_path))

from shared.factories import make_settings
from vfiles.config import Settings
from vfiles.dependencies import StorageServices, build_services, get_services
from vfiles.main import app


# -----------------------------------------------------------------------------
# Filesystem / Settings Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def temp_dir():
    """Create a temporary directory for repositories and scratch data.

    Uses resolve() so paths compare equal to the ones the services resolve.
    """
    path = Path(tempfile.mkdtemp()).resolve()
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(params=["worktree", "headless"])
def repo_mode(request) -> str:
    """Every test using a repository runs against both layouts."""
    return request.param


@pytest.fixture
def settings(temp_dir, repo_mode) -> Settings:
    return make_settings(temp_dir, repo_mode)


@pytest.fixture
def services(settings) -> StorageServices:
    return build_services(settings)


@pytest_asyncio.fixture
async def handle(services):
    """An initialized repository handle."""
    return await services.repository()


@pytest.fixture
def store(handle):
    return handle.store


# -----------------------------------------------------------------------------
# API Fixtures
# -----------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(services: StorageServices) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for API testing.

    The application is pointed at the test service container.
    """
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# -----------------------------------------------------------------------------
# Marker-based fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _mark_test(request):
    """Automatically apply markers based on test location."""
    if "unit" in str(request.fspath):
        request.applymarker(pytest.mark.unit)
    elif "integration" in str(request.fspath):
        request.applymarker(pytest.mark.integration)
    elif "demos" in str(request.fspath):
        request.applymarker(pytest.mark.demo)


@pytest.fixture
def anyio_backend():
    """Required for pytest-asyncio compatibility."""
    return "asyncio"
