import json
import os
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from gorkem_dashboard.storage.credentials import (
    AccessTokenCredentialProvider,
    CredentialProvider,
    ServiceAccountCredentialProvider,
)
from gorkem_dashboard.storage.transport import ClientConfig


@dataclass
class Config:
    """Centralized configuration loaded from environment variables."""

    spreadsheet_id: str
    api_base_url: Optional[str] = None
    service_account_file: Optional[str] = None
    service_account_json: Optional[str] = None
    access_token: Optional[str] = None
    log_level: str = "INFO"
    timezone: str = "UTC"
    host: str = "127.0.0.1"
    port: int = 8000
    access_log: bool = True


def load_config() -> Config:
    """Load configuration values from environment variables.

    The function also loads values from a local `.env` file when present to simplify
    development workflows.
    """

    load_dotenv()

    spreadsheet_id = os.getenv("SPREADSHEET_ID") or os.getenv("GOOGLE_SPREADSHEET_ID")
    if not spreadsheet_id:
        raise ValueError("SPREADSHEET_ID is required to start the dashboard")

    service_account_file = os.getenv("SERVICE_ACCOUNT_FILE")
    service_account_json = os.getenv("SERVICE_ACCOUNT_JSON")
    access_token = os.getenv("GOOGLE_ACCESS_TOKEN")
    if not (service_account_file or service_account_json or access_token):
        raise ValueError(
            "Provide SERVICE_ACCOUNT_FILE, SERVICE_ACCOUNT_JSON or GOOGLE_ACCESS_TOKEN for Google Sheets access",
        )

    _validate_json_payload(service_account_json)

    log_level = os.getenv("LOG_LEVEL", "INFO")
    timezone = os.getenv("TIMEZONE", "UTC")
    _validate_timezone(timezone)

    return Config(
        spreadsheet_id=spreadsheet_id,
        api_base_url=os.getenv("SHEETS_API_BASE_URL") or None,
        service_account_file=service_account_file,
        service_account_json=service_account_json,
        access_token=access_token,
        log_level=log_level,
        timezone=timezone,
        host=os.getenv("HOST", "127.0.0.1"),
        port=_parse_port(os.getenv("PORT", "8000")),
        access_log=os.getenv("ACCESS_LOG", "true").lower() not in {"false", "0", "no"},
    )


def build_credential_provider(config: Config) -> CredentialProvider:
    """Pick the credential source; an explicit access token wins over service accounts."""

    if config.access_token:
        return AccessTokenCredentialProvider(access_token=config.access_token)
    return ServiceAccountCredentialProvider(
        service_account_file=config.service_account_file,
        service_account_json=config.service_account_json,
    )


def build_client_config(config: Config) -> ClientConfig:
    return ClientConfig(
        spreadsheet_id=config.spreadsheet_id,
        credential_provider=build_credential_provider(config),
        api_base_url=config.api_base_url,
    )


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:  # noqa: BLE001
        raise ValueError("PORT must be an integer") from exc
    if not (0 < port < 65536):
        raise ValueError("PORT must be between 1 and 65535")
    return port


def _validate_timezone(value: str) -> None:
    """Ensure provided timezone is valid for ZoneInfo."""

    try:
        ZoneInfo(value)
    except Exception as exc:  # noqa: BLE001
        raise ValueError("TIMEZONE must be a valid IANA timezone, e.g., 'UTC' or 'Europe/Istanbul'") from exc


def _validate_json_payload(value: Optional[str]) -> None:
    """Validate that provided JSON string is parseable."""

    if not value:
        return
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise ValueError("SERVICE_ACCOUNT_JSON must be valid JSON if provided") from exc

    if not isinstance(parsed, dict):
        raise ValueError("SERVICE_ACCOUNT_JSON must represent a JSON object")
