from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Callable, Optional

from .config import AppSettings
from .emailer import SUBJECT, build_message, link_body
from .event_log import Event, append_event
from .security import generate_token
from .smtp_delivery import send_via_smtp
from .token_store import TokenStore, build_access_string

logger = logging.getLogger(__name__)

Mailer = Callable[[str, str, EmailMessage], None]


def smtp_mailer(settings: AppSettings) -> Mailer:
    def _send(envelope_from: str, to_addr: str, message: EmailMessage) -> None:
        send_via_smtp(
            settings=settings.smtp,
            envelope_from=envelope_from,
            to_addr=to_addr,
            message=message,
        )

    return _send


class LinkIssuer:
    def __init__(
        self,
        *,
        settings: AppSettings,
        store: TokenStore,
        mailer: Mailer,
        token_factory: Callable[[], str] = generate_token,
    ) -> None:
        self._settings = settings
        self._store = store
        self._mailer = mailer
        self._token_factory = token_factory

    def link_for(self, access_string: str) -> str:
        s = self._settings
        return f"https://{s.domain}{s.url_prefix}/{access_string}"

    def issue_link(self, username: str, domain: str) -> str:
        address = f"{username}@{domain}"
        try:
            token = self._token_factory()
        except Exception:
            logger.exception("cannot generate random token")
            append_event(Event.ISSUE_FAILED, address, err="token generation")
            raise

        access = build_access_string(token=token, username=username, domain=domain)
        sender = self._settings.smtp.sender
        message = build_message(
            from_addr=sender,
            to_addr=address,
            subject=SUBJECT,
            body_text=link_body(
                link=self.link_for(access),
                valid_minutes=max(1, int(self._store.valid_for // 60)),
            ),
        )

        try:
            self._mailer(self._settings.smtp.login_user or sender, address, message)
        except Exception as e:
            logger.error("Sending OTL to %s failed: %s", address, e)
            append_event(Event.ISSUE_FAILED, address, err=e)
            raise

        # Recorded only once the relay accepted the message.
        self._store.insert(access)
        logger.info("Sent OTL to %s", address)
        append_event(Event.SENT, address)
        return access


class NotificationDispatcher:
    def __init__(self, issuer: LinkIssuer, *, max_workers: int = 2) -> None:
        self._issuer = issuer
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="pwch-notify",
        )

    def dispatch(self, username: str, domain: str) -> Future:
        fut = self._executor.submit(self._issuer.issue_link, username, domain)
        fut.add_done_callback(_log_failure)
        return fut

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_failure(fut: Future) -> None:
    if fut.cancelled():
        return
    exc: Optional[BaseException] = fut.exception()
    if exc is not None:
        logger.error("link dispatch failed: %s", exc)
