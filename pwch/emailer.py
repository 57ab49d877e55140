from __future__ import annotations

from email.message import EmailMessage
from email.utils import formatdate, make_msgid

SUBJECT = "Password change requested"


def link_body(*, link: str, valid_minutes: int) -> str:
    return (
        "Follow this link to change your password:\n"
        "\n"
        f"{link}\n"
        "\n"
        f"It's valid for {valid_minutes} minutes.\n"
        "\n"
        "If you did not request a password change then just disregard "
        "this message.\n"
    )


def build_message(
    *,
    from_addr: str,
    to_addr: str,
    subject: str,
    body_text: str,
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=False)
    msg["Message-ID"] = make_msgid()
    msg.set_content(body_text)
    return msg
