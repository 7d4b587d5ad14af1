"""
In-memory stand-ins for the external services, used for testing and
development.
"""

from structlog.typing import FilteringBoundLogger

from familyhub.core.registry import PatientRecord, ValidationResult

from .registry import IdentityValidator, PatientLookup, RegistryUnavailable


class MockPatientLookup(PatientLookup):
    records: dict[str, PatientRecord]
    available: bool
    calls: list[str]

    def __init__(
        self,
        records: dict[str, PatientRecord] | None = None,
        available: bool = True,
    ):
        self.records = dict(records or {})
        self.available = available
        self.calls = []

    async def find_by_identity_key(
        self, identity_key: str, log: FilteringBoundLogger
    ) -> PatientRecord | None:
        self.calls.append(identity_key)

        if not self.available:
            raise RegistryUnavailable("Mock registry is unavailable")

        return self.records.get(identity_key.strip())


class MockIdentityValidator(IdentityValidator):
    known: set[str] | None
    calls: list[str]

    def __init__(self, known: set[str] | None = None):
        # None accepts every leader.
        self.known = known
        self.calls = []

    async def validate(
        self, short_id: str, log: FilteringBoundLogger
    ) -> ValidationResult:
        self.calls.append(short_id)

        if self.known is None or short_id in self.known:
            return ValidationResult(ok=True)

        return ValidationResult(ok=False, detail="unknown leader")
