"""
Adapters for the external services consulted during provisioning:

- the patient registry, which resolves an identity key to biographical
  fields. This lookup is mandatory when a user has to be synthesized from an
  identity key alone.
- the identity validation service, which is advisory only. Its failures are
  returned as `ValidationResult(ok=False)` and never raised.
"""

import abc
from json import JSONDecodeError
from typing import Any

import httpx
from structlog.typing import FilteringBoundLogger

from familyhub.config.settings import Settings
from familyhub.core.registry import PatientRecord, ValidationResult

from .errors import Unavailable


class RegistryUnavailable(Unavailable):
    pass


class PatientLookup(abc.ABC):
    """
    The base class for patient registries. Implementations return None when
    the registry has no record, and raise `RegistryUnavailable` when it could
    not be asked.
    """

    @abc.abstractmethod
    async def find_by_identity_key(
        self, identity_key: str, log: FilteringBoundLogger
    ) -> PatientRecord | None:
        raise NotImplementedError


class IdentityValidator(abc.ABC):
    @abc.abstractmethod
    async def validate(
        self, short_id: str, log: FilteringBoundLogger
    ) -> ValidationResult:
        raise NotImplementedError


async def registry_api_call(
    url: str,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """
    GET a JSON resource from one of the external services.
    """

    headers = {
        "Accept": "application/json",
        "User-Agent": "familyhub",
    }

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        return await client.get(url, headers=headers)


def _json_or_none(response: httpx.Response) -> dict[str, Any] | None:
    try:
        content = response.json()
    except JSONDecodeError:
        return None

    return content if isinstance(content, dict) else None


class HttpPatientLookup(PatientLookup):
    """
    Patient registry reached over HTTP at `{registry_url}/api/patients/{key}`.
    Both the registry's own field names and ours are accepted in the reply.
    """

    base_url: str | None
    timeout: float
    transport: httpx.AsyncBaseTransport | None

    def __init__(
        self,
        base_url: str | None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpPatientLookup":
        return cls(base_url=settings.registry_url, timeout=settings.registry_timeout)

    async def find_by_identity_key(
        self, identity_key: str, log: FilteringBoundLogger
    ) -> PatientRecord | None:
        log = log.bind(identity_key=identity_key)

        if self.base_url is None:
            await log.adebug("registry.lookup.not_configured")
            return None

        try:
            response = await registry_api_call(
                url=f"{self.base_url}/api/patients/{identity_key.strip()}",
                timeout=self.timeout,
                transport=self.transport,
            )
        except httpx.HTTPError as e:
            await log.awarning("registry.lookup.unavailable", error=str(e))
            raise RegistryUnavailable(
                f"Patient registry could not be reached: {e}"
            ) from e

        if response.status_code == 404:
            await log.ainfo("registry.lookup.not_found")
            return None

        if response.status_code != 200:
            await log.awarning(
                "registry.lookup.unavailable", status_code=response.status_code
            )
            raise RegistryUnavailable(
                f"Patient registry replied with status {response.status_code}"
            )

        content = _json_or_none(response)

        if content is None:
            await log.awarning("registry.lookup.malformed")
            raise RegistryUnavailable("Patient registry replied with malformed data")

        record = PatientRecord(
            name=content.get("name", content.get("nombre")),
            paternal_surname=content.get(
                "paternal_surname", content.get("apellidoPaterno")
            ),
            maternal_surname=content.get(
                "maternal_surname", content.get("apellidoMaterno")
            ),
            email=content.get("email", content.get("correo")),
            phone=content.get("phone", content.get("telefono")),
        )

        await log.ainfo("registry.lookup.found")

        return record


class HttpIdentityValidator(IdentityValidator):
    """
    Advisory leader check against `{identity_service_url}/api/users/leader/{id}`.
    Network errors and non-2xx replies are reported as `ok=False`.
    """

    base_url: str | None
    timeout: float
    transport: httpx.AsyncBaseTransport | None

    def __init__(
        self,
        base_url: str | None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpIdentityValidator":
        return cls(
            base_url=settings.identity_service_url, timeout=settings.registry_timeout
        )

    async def validate(
        self, short_id: str, log: FilteringBoundLogger
    ) -> ValidationResult:
        log = log.bind(leader_id=short_id)

        if self.base_url is None:
            await log.adebug("identity.validate.not_configured")
            return ValidationResult(ok=False, detail="not configured")

        try:
            response = await registry_api_call(
                url=f"{self.base_url}/api/users/leader/{short_id}",
                timeout=self.timeout,
                transport=self.transport,
            )
        except httpx.HTTPError as e:
            await log.awarning("identity.validate.unavailable", error=str(e))
            return ValidationResult(ok=False, detail=str(e))

        if response.status_code not in [200, 204]:
            await log.ainfo(
                "identity.validate.rejected", status_code=response.status_code
            )
            return ValidationResult(
                ok=False, detail=f"status {response.status_code}"
            )

        await log.adebug("identity.validate.ok")

        return ValidationResult(ok=True, detail=_json_or_none(response))
