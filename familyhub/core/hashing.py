"""
Utilities for hashing and comparing passwords.
"""

import bcrypt


class UnsupportedHashAlgorithm(Exception):
    pass


def _bcrypt_hash(plaintext: bytes, rounds: int) -> bytes:
    return bcrypt.hashpw(plaintext, bcrypt.gensalt(rounds=rounds))


def match_name_to_algorithm(name: str):
    match name:
        case "bcrypt":
            return _bcrypt_hash
        case _:
            raise UnsupportedHashAlgorithm(f"Algorithm {name} not supported")


def hash_password(plaintext: str, hash_algorithm: str, rounds: int = 10) -> str:
    """
    One-way hash of a password. You _must_ provide a valid hash_algorithm name
    (usually grab this from settings.password_hash_algorithm).
    """
    algorithm = match_name_to_algorithm(hash_algorithm)

    return algorithm(plaintext.encode("utf-8"), rounds).decode("utf-8")


def check_password(plaintext: str, password_hash: str) -> bool:
    """
    Compare a plaintext password to a stored hash.
    """
    return bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("utf-8"))
