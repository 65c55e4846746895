"""Error taxonomy shared by the Sheets transport, record store, and cache."""


class SheetsError(Exception):
    """Base error raised when a spreadsheet operation cannot complete."""


class AuthRequired(SheetsError):
    """Raised when no usable credential is available; re-authenticate to recover."""


class TransportError(SheetsError):
    """Raised on network or HTTP-level failures talking to the Sheets API."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFound(SheetsError):
    """Raised when the referenced sheet name or tab id does not exist."""


__all__ = ["AuthRequired", "NotFound", "SheetsError", "TransportError"]
