from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from email.utils import parseaddr
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Form, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from . import accounts
from .bridge import CommandBridge
from .config import AppSettings
from .exceptions import (
    CredentialMismatch,
    InfrastructureError,
    LinkExpired,
    PasswordValidationError,
    PwchError,
)
from .notifier import LinkIssuer, Mailer, NotificationDispatcher, smtp_mailer
from .password_change import Bridge, ChangeRequest, PasswordChanger
from .policy import PasswordPolicy
from .rate_limit import CooldownRateLimiter
from .security import PasswordHasher
from .token_store import TokenStore, TokenSweeper

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    PasswordValidationError: 400,
    CredentialMismatch: 403,
    LinkExpired: 410,
}


def parse_address(raw: str) -> Optional[tuple[str, str]]:
    """(username, domain) for a plain ``user@domain`` address."""
    raw = (raw or "").strip()
    if not raw or any(c.isspace() for c in raw):
        return None
    name, addr = parseaddr(raw)
    if name or addr != raw:
        return None
    username, sep, domain = addr.rpartition("@")
    if not sep or not username or not domain or "@" in username:
        return None
    return username, domain


def create_app(
    settings: AppSettings,
    *,
    store: Optional[TokenStore] = None,
    bridge: Optional[Bridge] = None,
    mailer: Optional[Mailer] = None,
    hasher: Optional[PasswordHasher] = None,
    limiter: Optional[CooldownRateLimiter] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    store = store or TokenStore(valid_for=settings.otl_valid_for)
    bridge = bridge or CommandBridge(
        wrapper_path=settings.bridge.path,
        timeout_seconds=settings.bridge.timeout_seconds,
    )
    hasher = hasher or PasswordHasher(cost=settings.bcrypt_cost)
    limiter = limiter or CooldownRateLimiter(
        window_seconds=settings.cooldown_seconds
    )
    policy = PasswordPolicy.from_settings(settings.password_policy)

    changer = PasswordChanger(
        store=store,
        bridge=bridge,
        hasher=hasher,
        policy=policy,
        digest_key=settings.digest_key,
    )
    issuer = LinkIssuer(
        settings=settings,
        store=store,
        mailer=mailer or smtp_mailer(settings),
    )
    dispatcher = NotificationDispatcher(issuer)
    templates = Jinja2Templates(directory=settings.assets_path)
    prefix = settings.url_prefix

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper = None
        if start_sweeper:
            sweeper = TokenSweeper(store, interval=settings.sweep_interval)
            sweeper.start()
        yield
        if sweeper is not None:
            sweeper.stop(timeout=5)
        dispatcher.shutdown(wait=True)

    app = FastAPI(title="pwch", lifespan=lifespan)
    app.state.settings = settings
    app.state.token_store = store
    app.state.changer = changer
    app.state.dispatcher = dispatcher
    app.state.limiter = limiter
    app.state.last_dispatch = None

    def _error_page(
        request: Request,
        message: str,
        status_code: int = 200,
        *,
        title: Optional[str] = None,
    ):
        return templates.TemplateResponse(
            request,
            "error.html",
            {"message": message, "prefix": prefix, "title": title},
            status_code=status_code,
        )

    @app.get(prefix + "/submitEmail", response_class=HTMLResponse)
    def submit_email(request: Request):
        return templates.TemplateResponse(
            request, "submitEmail.html", {"prefix": prefix}
        )

    @app.post(prefix + "/emailSend", response_class=HTMLResponse)
    def email_send(request: Request, email: str = Form("")):
        parsed = parse_address(email)
        if parsed is None:
            return _error_page(
                request,
                "Please enter a valid email address",
                400,
                title="Link not sent",
            )

        slot = limiter.try_acquire()
        if not slot.ok:
            return PlainTextResponse(
                content="Too early. Please try again.",
                status_code=425,
                headers={"Retry-After": str(slot.retry_after_seconds)},
            )

        try:
            account = accounts.account_enabled(*parsed)
        except InfrastructureError:
            limiter.release(slot)
            return _error_page(request, "Internal error", 500, title="Link not sent")

        # Same page whether or not the account exists; only a sent link
        # uses up the cooldown.
        if account is None:
            limiter.release(slot)
        else:
            app.state.last_dispatch = dispatcher.dispatch(
                account.username, account.domain
            )
        return templates.TemplateResponse(
            request, "emailSent.html", {"prefix": prefix}
        )

    @app.get(prefix + "/changePassword", response_class=HTMLResponse)
    def change_password_form(
        request: Request,
        token: str = "",
        username: str = "",
        domain: str = "",
    ):
        if not changer.link_is_valid(token, username, domain):
            return PlainTextResponse("Link expired")
        return templates.TemplateResponse(
            request,
            "changePassword.html",
            {
                "prefix": prefix,
                "token": token,
                "username": username,
                "domain": domain,
                "policy": policy,
            },
        )

    @app.post(prefix + "/submitPassword", response_class=HTMLResponse)
    def submit_password(
        request: Request,
        token: str = "",
        username: str = "",
        domain: str = "",
        current_password: str = Form("", alias="current-password"),
        new_password: str = Form("", alias="new-password"),
        confirm_password: str = Form("", alias="confirm-password"),
    ):
        if not changer.link_is_valid(token, username, domain):
            return RedirectResponse(url="/", status_code=302)

        req = ChangeRequest(
            token=token,
            username=username,
            domain=domain,
            old_password=current_password,
            new_password=new_password,
            confirm_password=confirm_password,
        )
        try:
            changer.change_password(req)
        except PwchError as e:
            status = _ERROR_STATUS.get(type(e), 500)
            return _error_page(request, e.message, status)

        return templates.TemplateResponse(
            request, "success.html", {"prefix": prefix}
        )

    return app
