from __future__ import annotations


class PwchError(Exception):
    """Base error. ``message`` is safe to show to the account owner."""

    message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ConfigError(PwchError):
    message = "invalid configuration"


class LinkExpired(PwchError):
    message = "Link expired"


class PasswordValidationError(PwchError):
    message = "Invalid password"


class CredentialMismatch(PwchError):
    # Same text for unknown accounts and wrong passwords.
    message = "Current password does not match"


class InfrastructureError(PwchError):
    message = "Internal error: Password not changed"


class InvalidBridgeArgument(PwchError):
    message = "invalid argument"


class BridgeError(PwchError):
    message = "Internal error: Password not changed"

    def __init__(
        self,
        message: str | None = None,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class MailboxRekeyError(BridgeError):
    pass


class OldDigestRejected(MailboxRekeyError):
    pass


class UnknownMailUser(MailboxRekeyError):
    pass


class BridgeTimeout(MailboxRekeyError):
    pass


class BridgeExecutionError(MailboxRekeyError):
    pass


class SessionTerminationError(BridgeError):
    message = "could not terminate sessions"
