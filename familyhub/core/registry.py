"""
Data returned by the external patient registry and identity service.
"""

from typing import Any

from pydantic import BaseModel


class PatientRecord(BaseModel):
    """
    Biographical fields held by the patient registry for one identity key.
    """

    name: str | None = None
    paternal_surname: str | None = None
    maternal_surname: str | None = None
    email: str | None = None
    phone: str | None = None

    def is_empty(self) -> bool:
        return not any(
            (self.name, self.paternal_surname, self.maternal_surname, self.email)
        )


class ValidationResult(BaseModel):
    """
    Outcome of an advisory identity check. Failures are values, not
    exceptions.
    """

    ok: bool
    detail: dict[str, Any] | str | None = None
