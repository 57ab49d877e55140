from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, ContextManager, Optional, Protocol

from . import accounts
from .bridge import KickOutcome
from .event_log import Event, append_event
from .exceptions import (
    CredentialMismatch,
    InfrastructureError,
    InvalidBridgeArgument,
    LinkExpired,
    MailboxRekeyError,
    PwchError,
    SessionTerminationError,
)
from .identifiers import AccountIdentity, HexDigest, account_from_parts, parse_digest
from .policy import PasswordPolicy, validate_new_password
from .security import PasswordHasher, password_digest
from .token_store import TokenStore, build_access_string

logger = logging.getLogger(__name__)


class Bridge(Protocol):
    def rekey_mailbox(
        self,
        account: AccountIdentity,
        old_digest: HexDigest,
        new_digest: HexDigest,
    ) -> None: ...

    def terminate_sessions(self, account: AccountIdentity) -> KickOutcome: ...


@dataclass
class ChangeRequest:
    token: str
    username: str
    domain: str
    old_password: str = field(repr=False)
    new_password: str = field(repr=False)
    confirm_password: str = field(repr=False)

    @property
    def access_string(self) -> str:
        return build_access_string(
            token=self.token,
            username=self.username,
            domain=self.domain,
        )

    @property
    def address(self) -> str:
        return f"{self.username}@{self.domain}"


@dataclass(frozen=True)
class ChangeResult:
    address: str
    sessions: Optional[KickOutcome]


class PasswordChanger:
    def __init__(
        self,
        *,
        store: TokenStore,
        bridge: Bridge,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        digest_key: Optional[str] = None,
        lookup_account: Callable[
            [str, str], Optional[accounts.MailAccount]
        ] = accounts.lookup_account,
        credential_update: Callable[
            [str, str, str], ContextManager[None]
        ] = accounts.credential_update,
    ) -> None:
        self.store = store
        self.bridge = bridge
        self.hasher = hasher
        self.policy = policy
        self._digest_key = digest_key
        self._lookup_account = lookup_account
        self._credential_update = credential_update

    def link_is_valid(self, token: str, username: str, domain: str) -> bool:
        return self.store.lookup(
            build_access_string(token=token, username=username, domain=domain)
        )

    def change_password(self, req: ChangeRequest) -> ChangeResult:
        try:
            result = self._change(req)
        except PwchError as e:
            append_event(Event.CHANGE_FAILED, req.address, err=e.message)
            raise
        append_event(Event.CHANGED, req.address)
        return result

    def _change(self, req: ChangeRequest) -> ChangeResult:
        key = req.access_string
        if not self.store.lookup(key):
            raise LinkExpired()

        validate_new_password(
            old_password=req.old_password,
            new_password=req.new_password,
            confirm_password=req.confirm_password,
            policy=self.policy,
        )

        try:
            account = account_from_parts(req.username, req.domain)
        except InvalidBridgeArgument as e:
            # Such an address can never be re-keyed; same answer as a
            # wrong password.
            logger.info("rejected account name %r: %s", req.address, e.message)
            raise CredentialMismatch() from e

        self._verify_old_password(req)

        issued_at = self.store.claim(key)
        if issued_at is None:
            raise LinkExpired()

        try:
            self._update_and_rekey(req, account)
        except Exception:
            self.store.restore(key, issued_at)
            raise

        logger.info("Password successfully changed for %s", req.address)
        sessions = self._terminate_sessions(account)
        logger.info("Consumed one-time link for %s", req.address)
        return ChangeResult(address=req.address, sessions=sessions)

    def _verify_old_password(self, req: ChangeRequest) -> None:
        stored = self._lookup_account(req.username, req.domain)
        if stored is None:
            logger.info("Can't validate old password for %s: unknown", req.address)
            raise CredentialMismatch()
        if not self.hasher.verify(req.old_password, stored.password_hash):
            logger.info("Can't validate old password for %s", req.address)
            raise CredentialMismatch()
        logger.info("Successfully validated old password for %s", req.address)

    def _update_and_rekey(self, req: ChangeRequest, account: AccountIdentity) -> None:
        try:
            new_hash = self.hasher.hash(req.new_password)
        except ValueError as e:
            logger.error("cannot hash new password for %s: %s", req.address, e)
            raise InfrastructureError() from e

        old_digest = parse_digest(
            password_digest(req.old_password, key=self._digest_key)
        )
        new_digest = parse_digest(
            password_digest(req.new_password, key=self._digest_key)
        )

        try:
            with self._credential_update(req.username, req.domain, new_hash):
                self.bridge.rekey_mailbox(account, old_digest, new_digest)
        except MailboxRekeyError:
            logger.error("rolled back password change for %s", req.address)
            raise

    def _terminate_sessions(self, account: AccountIdentity) -> Optional[KickOutcome]:
        try:
            return self.bridge.terminate_sessions(account)
        except SessionTerminationError as e:
            logger.warning(
                "password changed but sessions of %s may survive: %s",
                account,
                e.message,
            )
            return None
