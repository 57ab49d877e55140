from __future__ import annotations

import hmac
import secrets
from base64 import urlsafe_b64encode
from hashlib import sha3_512
from typing import Optional

from passlib.context import CryptContext

TOKEN_BYTES = 64


class PasswordHasher:
    def __init__(self, *, cost: int = 12) -> None:
        self._ctx = CryptContext(
            schemes=["bcrypt", "pbkdf2_sha256"],
            deprecated="auto",
            bcrypt__rounds=int(cost),
            bcrypt__ident="2b",
        )

    def hash(self, password: str) -> str:
        return self._ctx.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return self._ctx.verify(password, password_hash)
        except (ValueError, TypeError):
            return False


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    raw = secrets.token_bytes(nbytes)
    return urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def password_digest(password: str, *, key: Optional[str] = None) -> str:
    """Hex SHA3-512 of ``password``; HMAC-SHA3-512 when ``key`` is set.

    Deterministic: the mailbox key is derived from this value, so the
    same password always has to yield the same digest.
    """
    data = password.encode("utf-8")
    if key:
        return hmac.new(key.encode("utf-8"), data, sha3_512).hexdigest()
    return sha3_512(data).hexdigest()
