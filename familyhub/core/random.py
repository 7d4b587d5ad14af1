"""
Generate random identifiers and throwaway secrets.
"""

import secrets
import string

ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


def short_id(length: int = 8) -> str:
    """
    A candidate identifier drawn uniformly from the 62 alphanumeric symbols.
    Uniqueness is not guaranteed; see `familyhub.service.identifiers`.
    """
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def throwaway_password() -> str:
    return secrets.token_urlsafe(12)
