"""
Fixtures for the HTTP layer. The app's dependencies are overridden so that
requests run against the test database and mock external services.
"""

import httpx
import pytest_asyncio

from familyhub.api import dependencies
from familyhub.api.app import app
from familyhub.core.registry import PatientRecord
from familyhub.service.mock import MockIdentityValidator, MockPatientLookup


@pytest_asyncio.fixture(scope="session")
async def client(server_settings, session_manager):
    async def get_test_session():
        async with session_manager.session() as session:
            async with session.begin():
                yield session

    lookup = MockPatientLookup(
        records={
            "40000001-4": PatientRecord(
                name="Tomas",
                paternal_surname="Araya",
                email="tomas.araya@example.org",
            )
        }
    )

    app.dependency_overrides[dependencies.SETTINGS] = lambda: server_settings
    app.dependency_overrides[dependencies.get_async_session] = get_test_session
    app.dependency_overrides[dependencies.get_patient_lookup] = lambda: lookup
    app.dependency_overrides[dependencies.get_identity_validator] = (
        lambda: MockIdentityValidator()
    )

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="session")
def as_identity():
    """
    Headers authenticating a request as the given identity key.
    """

    def headers(identity_key: str) -> dict[str, str]:
        return {"x-user-rut": identity_key}

    yield headers
