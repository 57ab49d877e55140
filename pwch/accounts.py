from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .db import get_conn
from .exceptions import InfrastructureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailAccount:
    username: str
    domain: str
    enabled: bool
    password_hash: str

    @property
    def address(self) -> str:
        return f"{self.username}@{self.domain}"


def lookup_account(username: str, domain: str) -> Optional[MailAccount]:
    try:
        with get_conn() as conn:
            row = conn.execute(
                "select username, domain, enabled, password from accounts "
                "where username = ? and domain = ?",
                (username, domain),
            ).fetchone()
    except sqlite3.Error as e:
        logger.error("account lookup failed for %s@%s: %s", username, domain, e)
        raise InfrastructureError() from e
    if row is None:
        return None
    return MailAccount(
        username=str(row["username"]),
        domain=str(row["domain"]),
        enabled=int(row["enabled"]) == 1,
        password_hash=str(row["password"]),
    )


def account_enabled(username: str, domain: str) -> Optional[MailAccount]:
    """The account when it exists and is enabled, otherwise None."""
    account = lookup_account(username, domain)
    if account is None:
        logger.info("Unknown email address: %s@%s", username, domain)
        return None
    if not account.enabled:
        logger.info("Disabled email address: %s@%s", username, domain)
        return None
    logger.info("%s successfully validated", account.address)
    return account


def create_account(
    *,
    username: str,
    domain: str,
    password_hash: str,
    enabled: bool = True,
) -> None:
    with get_conn() as conn:
        conn.execute(
            "insert into accounts(username, domain, password, enabled) "
            "values(?, ?, ?, ?)",
            (username, domain, password_hash, 1 if enabled else 0),
        )


@contextmanager
def credential_update(
    username: str,
    domain: str,
    password_hash: str,
) -> Iterator[None]:
    """Stage a password hash write; commit only if the block succeeds.

    The write is rolled back when the block raises.
    """
    try:
        with get_conn() as conn:
            conn.execute("begin immediate")
            try:
                cur = conn.execute(
                    "update accounts set password = ? "
                    "where username = ? and domain = ?",
                    (password_hash, username, domain),
                )
                if cur.rowcount != 1:
                    logger.error("no account row for %s@%s", username, domain)
                    raise InfrastructureError()
                yield
            except BaseException:
                conn.execute("rollback")
                raise
            conn.execute("commit")
    except sqlite3.Error as e:
        logger.error("password update failed for %s@%s: %s", username, domain, e)
        raise InfrastructureError() from e
