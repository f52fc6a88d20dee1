"""Exception hierarchy shared by the settlement services."""


class FurlongError(Exception):
    """Base class for all Furlong errors."""


class ConfigurationError(FurlongError):
    """Required configuration (credentials, URLs) is missing or invalid."""


class StoreError(FurlongError):
    """A request to the data store failed."""

    def __init__(self, message: str, table: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.table = table
        self.status_code = status_code


class RecordValidationError(FurlongError):
    """A row from the store or provider did not match its record type."""

    def __init__(self, record_type: str, detail: str):
        super().__init__(f"Invalid {record_type} record: {detail}")
        self.record_type = record_type
        self.detail = detail

