import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Known signing secret and no real FHIR server for tests
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["JWT_AUDIENCE"] = ""
os.environ["JWT_ISSUER"] = ""
os.environ["FHIR_BASE_URL"] = "http://fhir.test/fhir"

from app.main import app
from app.routers.search import get_search_service
from app.services.search import SearchService
from tests.fakes import FakeFhirClient


@pytest.fixture
def fhir():
    """Provide a fresh in-memory FHIR server stand-in."""
    return FakeFhirClient()


@pytest.fixture
def service(fhir):
    return SearchService(fhir)


@pytest.fixture
def client(service):
    """Provide a synchronous TestClient wired to the fake FHIR server."""
    app.dependency_overrides[get_search_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(service):
    """Provide an async httpx client for async HTTP tests."""
    app.dependency_overrides[get_search_service] = lambda: service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
