"""Hand-off point for invite e-mails.

Delivery itself is an external concern. The default mailer only logs the
invite; deployments plug a real sender in with ``set_invite_mailer``. Sending
is best-effort: a failing mailer never fails deal creation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger("tradeflow.invites")


@dataclass(frozen=True)
class InviteEmail:
    to: str
    company_name: str
    contact_name: str | None
    role: str
    deal_number: str
    invite_url: str
    expires_at: str


InviteMailer = Callable[[InviteEmail], None]


def _log_only_mailer(email: InviteEmail) -> None:
    logger.info(
        "invite_email_queued",
        extra={
            "to": email.to,
            "role": email.role,
            "deal_number": email.deal_number,
            "invite_url": email.invite_url,
        },
    )


_mailer: InviteMailer = _log_only_mailer


def set_invite_mailer(mailer: InviteMailer | None) -> None:
    global _mailer
    _mailer = mailer or _log_only_mailer


def build_invite_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/invite/{token}"


def send_invite_email(email: InviteEmail) -> bool:
    try:
        _mailer(email)
        return True
    except Exception as exc:
        logger.exception(
            "invite_email_failed",
            extra={"to": email.to, "deal_number": email.deal_number, "error": str(exc)},
        )
        return False
