from __future__ import annotations

import re
from dataclasses import dataclass

from .exceptions import InvalidBridgeArgument

DIGEST_HEX_LENGTH = 128
MAX_ACCOUNT_LENGTH = 254

_ACCOUNT_RE = re.compile(r"[0-9A-Za-z._+\-]+@[0-9A-Za-z.\-]+")
_DIGEST_RE = re.compile(r"[0-9a-f]{%d}" % DIGEST_HEX_LENGTH)


@dataclass(frozen=True)
class AccountIdentity:
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class HexDigest:
    value: str

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return "HexDigest(***)"


def parse_account(raw: str) -> AccountIdentity:
    if not isinstance(raw, str) or not raw:
        raise InvalidBridgeArgument("empty account")
    if len(raw) > MAX_ACCOUNT_LENGTH:
        raise InvalidBridgeArgument("account too long")
    if _ACCOUNT_RE.fullmatch(raw) is None:
        raise InvalidBridgeArgument("account contains disallowed characters")
    return AccountIdentity(raw)


def account_from_parts(username: str, domain: str) -> AccountIdentity:
    return parse_account(f"{username}@{domain}")


def parse_digest(raw: str) -> HexDigest:
    if not isinstance(raw, str) or _DIGEST_RE.fullmatch(raw) is None:
        raise InvalidBridgeArgument("digest must be 128 lower-case hex digits")
    return HexDigest(raw)
