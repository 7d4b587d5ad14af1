"""
Configuration variables and fixtures for the service layer tests.
"""

import pytest_asyncio

from familyhub.core.registry import PatientRecord
from familyhub.service import user as user_service
from familyhub.service.mock import MockIdentityValidator, MockPatientLookup


@pytest_asyncio.fixture(scope="session")
def make_leader(session_manager, logger, server_settings, new_identity):
    """
    Returns an async callable that creates a groupless leader in its own
    transaction and gives back their short ID.
    """

    async def make(**kwargs) -> str:
        identity_key, email = new_identity()

        async with session_manager.session() as conn:
            async with conn.begin():
                leader = await user_service.create_leader(
                    identity_key=kwargs.pop("identity_key", identity_key),
                    email=kwargs.pop("email", email),
                    first_name=kwargs.pop("first_name", "Ana"),
                    last_name_paternal=kwargs.pop("last_name_paternal", "Rojas"),
                    settings=server_settings,
                    conn=conn,
                    log=logger,
                    **kwargs,
                )

                return leader.short_id

    yield make


@pytest_asyncio.fixture(scope="session")
def lookup():
    yield MockPatientLookup(
        records={
            "30000001-1": PatientRecord(
                name="Camila",
                paternal_surname="Soto",
                maternal_surname="Fuentes",
                email="camila.soto@example.org",
                phone="+56911111111",
            ),
        }
    )


@pytest_asyncio.fixture(scope="session")
def validator():
    yield MockIdentityValidator()
