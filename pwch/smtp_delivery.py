from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage
from typing import Union

from .config import SmtpSettings


def send_via_smtp(
    *,
    settings: SmtpSettings,
    envelope_from: str,
    to_addr: str,
    message: EmailMessage,
) -> None:
    """Hand ``message`` to the relay. Raises on any failure; no retry."""
    if not settings.host:
        raise RuntimeError("smtp host not configured")

    ctx = ssl.create_default_context()

    smtp: Union[smtplib.SMTP, smtplib.SMTP_SSL, None] = None
    try:
        if settings.security == "ssl":
            smtp = smtplib.SMTP_SSL(
                host=settings.host,
                port=settings.port,
                timeout=settings.timeout_seconds,
                context=ctx,
            )
            smtp.ehlo()
        else:
            smtp = smtplib.SMTP(
                host=settings.host,
                port=settings.port,
                timeout=settings.timeout_seconds,
            )
            smtp.ehlo()
            if settings.security == "starttls":
                smtp.starttls(context=ctx)
                smtp.ehlo()

        if settings.login_user:
            if not settings.login_password:
                raise RuntimeError("smtp login user set but password is empty")
            smtp.login(settings.login_user, settings.login_password)

        smtp.send_message(message, from_addr=envelope_from, to_addrs=[to_addr])
    finally:
        try:
            if smtp is not None:
                smtp.quit()
        except (smtplib.SMTPException, OSError):
            pass
