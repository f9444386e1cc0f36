"""
Credential issuance: random tokens and salted password encoding.
"""

from __future__ import annotations

import hmac
import secrets
import string
from dataclasses import dataclass
from typing import Optional

import bcrypt

from provisioning.core.exceptions import CredentialError
from provisioning.models.user import User

_ALPHABET = string.ascii_letters + string.digits

TOKEN_LENGTH = 10
ENCODED_PASSWORD_BYTES = 50


@dataclass(frozen=True)
class Credentials:
    salt: str
    rands: str
    password: Optional[str]  # None when no plaintext was supplied


def get_random_string(length: int = TOKEN_LENGTH) -> str:
    """Cryptographically random alphanumeric string."""
    if length < 1:
        raise CredentialError(f"random string length must be positive, got {length}")
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def encode_password(password: str, salt: str, rounds: int) -> str:
    """Derive a hex-encoded key from ``password`` and ``salt`` with bcrypt-pbkdf."""
    try:
        key = bcrypt.kdf(
            password=password.encode(),
            salt=salt.encode(),
            desired_key_bytes=ENCODED_PASSWORD_BYTES,
            rounds=rounds,
            ignore_few_rounds=True,
        )
    except (TypeError, ValueError) as exc:
        raise CredentialError(f"failed to encode password: {exc}") from exc
    return key.hex()


def issue_credentials(password: str, rounds: int) -> Credentials:
    """Fresh salt and rands; the password is encoded only when one is given."""
    salt = get_random_string()
    rands = get_random_string()
    encoded = encode_password(password, salt, rounds) if password else None
    return Credentials(salt=salt, rands=rands, password=encoded)


def is_password_valid(password: str, user: User, rounds: int) -> bool:
    if not password or not user.password:
        return False
    candidate = encode_password(password, user.salt, rounds)
    return hmac.compare_digest(candidate, user.password)
