"""Exception types raised by wafsync."""


class WafSyncError(Exception):
    """Base class for all wafsync errors."""


class ConfigError(WafSyncError):
    """Invalid or missing configuration, or unusable input."""


class OperationAborted(WafSyncError):
    """The operator declined a confirmation prompt."""


class AddressParseError(WafSyncError):
    """A single input token could not be turned into an address entry."""

    def __init__(self, token: str, message: str, line: int | None = None):
        self.token = token
        self.line = line
        super().__init__(message)

    def __str__(self) -> str:
        prefix = f"Line {self.line}: " if self.line is not None else ""
        return f"{prefix}{self.args[0]} - {self.token}"


class InvalidFormat(AddressParseError):
    """Malformed address, octet out of range, or malformed prefix."""


class UnsupportedAddressFamily(AddressParseError):
    """Token looks like an IPv6 address."""


class RemoteError(WafSyncError):
    """Failure reported by, or while talking to, the firewall API."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        text = self.args[0]
        if self.status_code is not None:
            text = f"{text} (HTTP {self.status_code})"
        if self.detail:
            text = f"{text}: {self.detail}"
        return text


class RateLimited(RemoteError):
    """HTTP 429 from the API."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        detail: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code, detail)
        self.retry_after = retry_after


class ServerError(RemoteError):
    """5xx response or an internal error code from the firewall service."""

    retryable = True


class NetworkError(RemoteError):
    """Transport-level failure (connect, timeout, reset)."""

    retryable = True


class ClientError(RemoteError):
    """Non-retryable 4xx: bad request, permission denied, not found."""


class PartialFailure(WafSyncError):
    """Some planned operations succeeded while cleanup steps did not."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class ReconciliationFailed(WafSyncError):
    """A required step (insert or update) failed after retries."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report
