from __future__ import annotations

import logging
import subprocess
from enum import Enum

from .exceptions import (
    BridgeExecutionError,
    BridgeTimeout,
    OldDigestRejected,
    SessionTerminationError,
    UnknownMailUser,
)
from .identifiers import AccountIdentity, HexDigest

logger = logging.getLogger(__name__)

# doveadm exit codes (sysexits.h)
EX_OK = 0
EX_DATAERR = 65
EX_NOUSER = 67
EX_NOSESSIONS = 68

DEFAULT_WRAPPER_PATH = "/usr/local/bin/doveadm_wrapper"


class KickOutcome(Enum):
    TERMINATED = "terminated"
    NO_SESSIONS = "no_sessions"


class CommandBridge:
    def __init__(
        self,
        *,
        wrapper_path: str = DEFAULT_WRAPPER_PATH,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.wrapper_path = wrapper_path
        self.timeout_seconds = float(timeout_seconds)

    def _run(self, args: list[str], stdin: bytes | None = None):
        return subprocess.run(
            [self.wrapper_path, *args],
            input=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=self.timeout_seconds,
            check=False,
        )

    def rekey_mailbox(
        self,
        account: AccountIdentity,
        old_digest: HexDigest,
        new_digest: HexDigest,
    ) -> None:
        # Digests go over stdin so they never show up in the process list.
        payload = f"{account}\n{old_digest}\n{new_digest}\n".encode("ascii")
        try:
            p = self._run(["swap"], stdin=payload)
        except subprocess.TimeoutExpired as e:
            logger.error(
                "swap for %s timed out after %ss", account, self.timeout_seconds
            )
            raise BridgeTimeout() from e
        except OSError as e:
            logger.error("cannot run %s: %s", self.wrapper_path, e)
            raise BridgeExecutionError() from e

        err = p.stderr.decode("utf-8", errors="replace").strip()
        if p.returncode == EX_OK:
            logger.info("Successfully swapped keys for %s", account)
            return
        logger.error(
            "Can't swap keys for %s: exit %s %s", account, p.returncode, err
        )
        if p.returncode == EX_DATAERR:
            raise OldDigestRejected(exit_code=p.returncode, stderr=err)
        if p.returncode == EX_NOUSER:
            raise UnknownMailUser(exit_code=p.returncode, stderr=err)
        raise BridgeExecutionError(exit_code=p.returncode, stderr=err)

    def terminate_sessions(self, account: AccountIdentity) -> KickOutcome:
        try:
            p = self._run(["kick", str(account)])
        except subprocess.TimeoutExpired as e:
            logger.error(
                "kick for %s timed out after %ss", account, self.timeout_seconds
            )
            raise SessionTerminationError("timed out") from e
        except OSError as e:
            logger.error("cannot run %s: %s", self.wrapper_path, e)
            raise SessionTerminationError(str(e)) from e

        if p.returncode == EX_OK:
            logger.info("Successfully terminated all sessions for %s", account)
            return KickOutcome.TERMINATED
        if p.returncode == EX_NOSESSIONS:
            logger.info("No active sessions to terminate for %s", account)
            return KickOutcome.NO_SESSIONS

        err = p.stderr.decode("utf-8", errors="replace").strip()
        logger.error(
            "Can't terminate sessions for %s: exit %s %s",
            account,
            p.returncode,
            err,
        )
        raise SessionTerminationError(exit_code=p.returncode, stderr=err)
