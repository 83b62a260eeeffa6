"""Coach email delivery through the Gmail API.

Each sending account is an OAuth client plus refresh token, read from
``<ACCOUNT>_GMAIL_CLIENT_ID``, ``<ACCOUNT>_GMAIL_CLIENT_SECRET``,
``<ACCOUNT>_GMAIL_REFRESH_TOKEN`` and ``<ACCOUNT>_GMAIL_ADDRESS``.
google-auth refreshes the access token on the first request.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
from email.message import EmailMessage
import logging
import os
from typing import Dict, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials
import requests

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"
REQUEST_TIMEOUT = 15

# GmailAccountConfig field -> env var suffix
_ENV_SUFFIXES = {
    "client_id": "CLIENT_ID",
    "client_secret": "CLIENT_SECRET",
    "refresh_token": "REFRESH_TOKEN",
    "from_address": "ADDRESS",
}


class GmailError(RuntimeError):
    """Gmail credentials are missing or the API rejected a send."""


@dataclass(slots=True)
class GmailAccountConfig:
    name: str
    client_id: str
    client_secret: str
    refresh_token: str
    from_address: str

    def credentials(self) -> Credentials:
        return Credentials(
            token=None,
            refresh_token=self.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=TOKEN_URI,
            scopes=[SEND_SCOPE],
        )


def load_account_from_env(name: str) -> GmailAccountConfig:
    prefix = f"{name.upper()}_GMAIL_"
    values: Dict[str, str] = {
        field: (os.getenv(prefix + suffix) or "").strip()
        for field, suffix in _ENV_SUFFIXES.items()
    }
    missing = [_ENV_SUFFIXES[field] for field, value in values.items() if not value]
    if missing:
        raise GmailError(
            f"Missing Gmail env vars for account '{name}': {', '.join(missing)}"
        )
    return GmailAccountConfig(name=name, **values)


def _build_raw_message(*, from_address: str, to_address: str, subject: str, body: str) -> str:
    """RFC 2822 message, base64url encoded as the ``raw`` field expects."""
    message = EmailMessage()
    message["From"] = from_address
    message["To"] = to_address
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


def send_email(
    account: GmailAccountConfig,
    *,
    to_address: str,
    subject: str,
    body: str,
) -> str:
    """Send one plain-text message and return the Gmail message id."""
    if not to_address:
        raise GmailError("No recipient email available for Gmail send.")

    raw = _build_raw_message(
        from_address=account.from_address,
        to_address=to_address,
        subject=subject,
        body=body,
    )
    session = AuthorizedSession(account.credentials())
    try:
        resp = session.post(SEND_URL, json={"raw": raw}, timeout=REQUEST_TIMEOUT)
    except RefreshError as exc:
        raise GmailError(f"Gmail token refresh failed for '{account.name}': {exc}") from exc
    except requests.RequestException as exc:  # pragma: no cover - network path
        raise GmailError(f"Gmail network error: {exc}") from exc

    if resp.status_code >= 400:
        raise GmailError(f"Gmail send failed with status {resp.status_code}: {resp.text}")
    return resp.json().get("id", "")


@dataclass(slots=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailSender:
    """Sends coach email from the account named by ``VC_EMAIL_ACCOUNT``."""

    def __init__(self, account_name: str = "coach", *, account: Optional[GmailAccountConfig] = None) -> None:
        self.account_name = account_name
        self._account = account

    def _resolve_account(self) -> GmailAccountConfig:
        if self._account is None:
            self._account = load_account_from_env(self.account_name)
        return self._account

    def send(self, *, to_address: str, subject: str, body: str) -> EmailResult:
        """Send one message; Gmail failures come back as an unsuccessful result."""
        try:
            message_id = send_email(
                self._resolve_account(),
                to_address=to_address,
                subject=subject,
                body=body,
            )
        except GmailError as exc:
            logger.error("Email to %s failed: %s", to_address, exc)
            return EmailResult(success=False, error=str(exc))
        logger.info("Email sent to %s id=%s", to_address, message_id)
        return EmailResult(success=True, message_id=message_id)
