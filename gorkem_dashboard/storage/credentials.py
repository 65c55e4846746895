"""Credential providers injected into the Sheets transport.

The transport never looks credentials up on its own. It asks a provider for
the current credential and treats ``None`` as "not signed in".
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import google.auth
from google.auth.exceptions import DefaultCredentialsError
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2 import service_account

from gorkem_dashboard.storage.errors import AuthRequired


logger = logging.getLogger(__name__)

SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class CredentialProvider(Protocol):
    """Capability the transport depends on for the token lifecycle."""

    def get_credentials(self) -> Optional[Any]:
        ...

    def refresh(self) -> Optional[Any]:
        ...

    def revoke(self) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceAccountCredentialProvider:
    """Service account credentials from inline JSON, a key file, or ADC."""

    def __init__(
        self,
        service_account_file: Optional[str] = None,
        service_account_json: Optional[str] = None,
    ) -> None:
        self.service_account_file = service_account_file
        self.service_account_json = service_account_json
        self._credentials: Any | None = None

    def get_credentials(self) -> Optional[Any]:
        if self._credentials is None:
            self._credentials = self._load_credentials()
        return self._credentials

    def refresh(self) -> Optional[Any]:
        # googleapiclient refreshes service account tokens on demand; reloading
        # the key material is all that is left to do here.
        self._credentials = self._load_credentials()
        return self._credentials

    def revoke(self) -> None:
        self._credentials = None

    def _load_credentials(self):
        scopes = [SCOPE]
        if self.service_account_json:
            info = self._load_service_account_info(self.service_account_json)
            return service_account.Credentials.from_service_account_info(info, scopes=scopes)
        if self.service_account_file:
            with open(self.service_account_file, "r", encoding="utf-8") as fh:
                info = json.load(fh)
            self._validate_service_account_info(info)
            return service_account.Credentials.from_service_account_info(info, scopes=scopes)

        try:
            credentials, _ = google.auth.default(scopes=scopes)
        except DefaultCredentialsError as exc:
            raise AuthRequired("No Google credentials are configured") from exc
        return credentials

    def _load_service_account_info(self, raw_json: str) -> Dict[str, Any]:
        try:
            info = json.loads(raw_json)
        except json.JSONDecodeError as exc:
            raise ValueError("Service account JSON is not valid JSON") from exc

        self._validate_service_account_info(info)
        return info

    @staticmethod
    def _validate_service_account_info(info: Dict[str, Any]) -> None:
        required_fields = ["client_email", "token_uri", "private_key", "project_id"]
        missing = [field for field in required_fields if not info.get(field)]
        if missing:
            raise ValueError(
                "Service account info missing required fields: " + ", ".join(sorted(missing))
            )


class AccessTokenCredentialProvider:
    """Wraps an OAuth access token obtained by an external sign-in flow.

    A token is treated as expired five minutes before its actual expiry. When
    a ``refresh_callback`` is supplied it is asked for a new
    ``(access_token, expires_in_seconds)`` pair; otherwise an expired token
    means the user has to sign in again.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        refresh_callback: Optional[Callable[[], Tuple[str, int]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._access_token = access_token
        self._expires_at = expires_at
        self._refresh_callback = refresh_callback
        self._clock = clock

    @property
    def is_authenticated(self) -> bool:
        return self._access_token is not None and not self._is_expired()

    def set_token(self, access_token: str, expires_in: int = DEFAULT_TOKEN_LIFETIME_SECONDS) -> None:
        self._access_token = access_token
        self._expires_at = self._clock() + timedelta(seconds=expires_in)
        logger.info("Access token stored", extra={"expires_at": self._expires_at.isoformat()})

    def get_credentials(self) -> Optional[Any]:
        if self._access_token and not self._is_expired():
            return oauth2_credentials.Credentials(token=self._access_token)
        if self._access_token:
            logger.info("Stored access token expired")
            self._access_token = None
        return self.refresh()

    def refresh(self) -> Optional[Any]:
        if self._refresh_callback is None:
            return None
        access_token, expires_in = self._refresh_callback()
        if not access_token:
            return None
        self.set_token(access_token, expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS)
        return oauth2_credentials.Credentials(token=access_token)

    def revoke(self) -> None:
        self._access_token = None
        self._expires_at = None
        logger.info("Access token revoked")

    def _is_expired(self) -> bool:
        if self._expires_at is None:
            return False
        return self._clock() >= self._expires_at - TOKEN_EXPIRY_BUFFER


__all__ = [
    "AccessTokenCredentialProvider",
    "CredentialProvider",
    "SCOPE",
    "ServiceAccountCredentialProvider",
    "TOKEN_EXPIRY_BUFFER",
]
