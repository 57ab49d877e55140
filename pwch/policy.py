from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from typing import Optional

from .config import PolicySettings
from .exceptions import PasswordValidationError


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 12
    max_length: int = 64
    lower_case: bool = True
    upper_case: bool = True
    digits: bool = True
    special_char: bool = True

    @classmethod
    def from_settings(cls, s: PolicySettings) -> "PasswordPolicy":
        return cls(
            min_length=s.min_length,
            max_length=s.max_length,
            lower_case=s.lower_case,
            upper_case=s.upper_case,
            digits=s.digits,
            special_char=s.special_char,
        )


def _char_class(ch: str) -> Optional[str]:
    cat = unicodedata.category(ch)
    if cat.startswith("N"):
        return "digit"
    if cat == "Ll":
        return "lower"
    if cat == "Lu":
        return "upper"
    if cat[0] in ("P", "S") or ch.isspace():
        return "special"
    return None


def check_password_policy(password: str, policy: PasswordPolicy) -> Optional[str]:
    """Return the first policy violation message, or None if it passes.

    Length is checked before character classes; missing classes are
    reported in the order lower, upper, digit, special.
    """
    if len(password) < policy.min_length:
        return (
            f"Please enter at least a {policy.min_length} "
            "character long password"
        )
    if len(password) > policy.max_length:
        return f"Please enter at max a {policy.max_length} character long password"

    # Classes that are not required count as present.
    seen = {
        "lower": not policy.lower_case,
        "upper": not policy.upper_case,
        "digit": not policy.digits,
        "special": not policy.special_char,
    }
    for ch in password:
        cls = _char_class(ch)
        if cls is not None:
            seen[cls] = True

    if not seen["lower"]:
        return "Please enter at least one lower case character"
    if not seen["upper"]:
        return "Please enter at least one upper case character"
    if not seen["digit"]:
        return "Please enter at least one digit"
    if not seen["special"]:
        return "Please enter at least one special character"
    return None


def validate_new_password(
    *,
    old_password: str,
    new_password: str,
    confirm_password: str,
    policy: PasswordPolicy,
) -> None:
    if new_password != confirm_password:
        raise PasswordValidationError("Passwords do not match")
    if old_password == new_password:
        raise PasswordValidationError(
            "You are trying to set the same password again"
        )
    err = check_password_policy(new_password, policy)
    if err is not None:
        raise PasswordValidationError(err)
