"""
Exception taxonomy shared by the service layer. Every failure carries a
stable `kind` and a human readable message; the API maps kinds to status
codes.
"""


class FamilyHubError(Exception):
    kind: str = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(FamilyHubError):
    kind = "not_found"


class Conflict(FamilyHubError):
    kind = "conflict"


class Forbidden(FamilyHubError):
    kind = "forbidden"


class AllocationExhausted(FamilyHubError):
    """
    No unique identifier was found within the allowed attempts. Transient;
    the whole operation may be retried.
    """

    kind = "allocation_exhausted"


class Unavailable(FamilyHubError):
    """
    A mandatory external lookup failed or timed out.
    """

    kind = "unavailable"
