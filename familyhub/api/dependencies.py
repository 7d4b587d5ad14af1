"""
Dependencies used by the API.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger
from structlog.typing import FilteringBoundLogger

from familyhub.config.settings import Settings
from familyhub.service.registry import (
    HttpIdentityValidator,
    HttpPatientLookup,
    IdentityValidator,
    PatientLookup,
)

from .authentication import FamilyUser


@lru_cache
def SETTINGS():
    return Settings()


DATABASE_MANAGER = SETTINGS().async_manager()


async def get_async_session():
    # One transaction per request: any service error rolls back every write.
    async with DATABASE_MANAGER.session() as session:
        async with session.begin():
            yield session


def logger():
    return get_logger()


@lru_cache
def get_patient_lookup() -> PatientLookup:
    return HttpPatientLookup.from_settings(SETTINGS())


@lru_cache
def get_identity_validator() -> IdentityValidator:
    return HttpIdentityValidator.from_settings(SETTINGS())


async def handle_authenticated_user(request: Request) -> FamilyUser:
    """
    The caller set by the authentication middleware. Raises a 401 if the
    request carried no identity.
    """
    user = request.user

    if not isinstance(user, FamilyUser) or not user.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="An identity key is required for this endpoint",
        )

    return user


SettingsDependency = Annotated[Settings, Depends(SETTINGS)]
DatabaseDependency = Annotated[AsyncSession, Depends(get_async_session)]
LoggerDependency = Annotated[FilteringBoundLogger, Depends(logger)]
PatientLookupDependency = Annotated[PatientLookup, Depends(get_patient_lookup)]
IdentityValidatorDependency = Annotated[
    IdentityValidator, Depends(get_identity_validator)
]
AuthenticatedUserDependency = Annotated[
    FamilyUser, Depends(handle_authenticated_user)
]
