"""
Starlette authentication backend for the family group API.

Identity is verified upstream (by the gateway that fronts this service) and
handed to us as an identity key in a request header. The backend only checks
its shape; handlers receive a `FamilyUser` and never read the header
themselves.

from starlette.middleware.authentication import AuthenticationMiddleware

app.add_middleware(
    AuthenticationMiddleware,
    backend=IdentityHeaderBackend(header_name=settings.identity_header),
    on_error=on_auth_error,
)
"""

import re

from pydantic import BaseModel
from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    AuthenticationError,
)
from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse
from structlog import get_logger

from familyhub.core.models import IDENTITY_KEY_PATTERN


class InvalidIdentityError(AuthenticationError):
    pass


class FamilyUser(BaseModel):
    """
    The caller of an API request.
    """

    is_authenticated: bool = False
    identity_key: str | None = None

    @property
    def display_name(self) -> str:
        return self.identity_key or ""


class IdentityHeaderBackend(AuthenticationBackend):
    """
    Reads the caller's identity key from `header_name`. Requests without the
    header are passed on unauthenticated; requests with a malformed key raise
    `InvalidIdentityError`, which `on_auth_error` turns into a 401.
    """

    header_name: str

    def __init__(self, header_name: str = "x-user-rut"):
        self.header_name = header_name

    async def authenticate(self, conn: HTTPConnection):
        log = get_logger()
        log = log.bind(client=conn.client, header_name=self.header_name)

        identity_key = conn.headers.get(self.header_name)

        if identity_key is None:
            log.debug("api.auth.no_identity")
            return AuthCredentials([]), FamilyUser(is_authenticated=False)

        identity_key = identity_key.strip()

        if not re.match(IDENTITY_KEY_PATTERN, identity_key):
            log.info("api.auth.invalid_identity")
            raise InvalidIdentityError("Identity key is malformed")

        log.debug("api.auth.success", identity_key=identity_key)

        return AuthCredentials(["authenticated"]), FamilyUser(
            is_authenticated=True, identity_key=identity_key
        )


class MockIdentityBackend(AuthenticationBackend):
    """
    Authenticates every request as the same identity. For tests and local
    development only.
    """

    identity_key: str

    def __init__(self, identity_key: str = "11111111-1"):
        self.identity_key = identity_key

    async def authenticate(self, conn: HTTPConnection):
        return AuthCredentials(["authenticated"]), FamilyUser(
            is_authenticated=True, identity_key=self.identity_key
        )


def on_auth_error(conn: HTTPConnection, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=401, content={"kind": "unauthenticated", "detail": str(exc)}
    )
