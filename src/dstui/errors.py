"""Error taxonomy for the Download Station client."""

from enum import Enum


class DstuiError(Exception):
    """Base class for every error raised by dstui."""


class TransportError(DstuiError):
    """Raised when a request cannot reach the server (connection error, timeout)."""


class AuthErrorKind(Enum):
    """Why authentication failed."""
    INVALID_CREDENTIALS = "invalid_credentials"
    UNAVAILABLE = "unavailable"


# SYNO.API.Auth error codes
AUTH_ERROR_DESCRIPTIONS: dict[int, str] = {
    400: "No such account or incorrect password",
    401: "Account disabled",
    402: "Permission denied",
    403: "2-step verification code required",
    404: "Failed to authenticate 2-step verification code",
}


class AuthError(DstuiError):
    """Raised when the server refuses to issue a session token."""

    def __init__(self, kind: AuthErrorKind, message: str, code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.code = code

    @classmethod
    def from_code(cls, code: int) -> "AuthError":
        """Map a SYNO.API.Auth error code to an AuthError."""
        if code in AUTH_ERROR_DESCRIPTIONS:
            return cls(AuthErrorKind.INVALID_CREDENTIALS, AUTH_ERROR_DESCRIPTIONS[code], code)
        return cls(AuthErrorKind.UNAVAILABLE, f"Authentication unavailable (code {code})", code)

    @property
    def is_invalid_credentials(self) -> bool:
        return self.kind is AuthErrorKind.INVALID_CREDENTIALS


class ApiErrorKind(Enum):
    """Closed set of per-call API failures."""
    AUTH_EXPIRED = "auth_expired"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    MALFORMED = "malformed"


# Common WebAPI codes that mean the session id is no longer valid
SESSION_INVALID_CODES = frozenset({105, 106, 107, 119})

# SYNO.DownloadStation.Task codes that mean the task is gone
NOT_FOUND_CODES = frozenset({404, 408})

# HTTP statuses the server uses when it is throttling or in maintenance
RATE_LIMITED_STATUSES = frozenset({429, 503})

API_ERROR_DESCRIPTIONS: dict[int, str] = {
    100: "Unknown error",
    101: "Invalid parameter",
    102: "The requested API does not exist",
    103: "The requested method does not exist",
    104: "The requested version does not support the functionality",
    105: "Session expired or insufficient privilege",
    106: "Session timeout",
    107: "Session interrupted by duplicate login",
    119: "Session id not found",
    400: "File upload failed",
    401: "Maximum number of tasks reached",
    402: "Destination denied",
    403: "Destination does not exist",
    404: "Invalid task id",
    405: "Invalid task action",
    406: "No default destination",
    407: "Set destination failed",
    408: "File does not exist",
}


def kind_for_code(code: int) -> ApiErrorKind:
    """Map an envelope error code to its ApiErrorKind; unknown codes are server errors."""
    if code in SESSION_INVALID_CODES:
        return ApiErrorKind.AUTH_EXPIRED
    if code in NOT_FOUND_CODES:
        return ApiErrorKind.NOT_FOUND
    return ApiErrorKind.SERVER_ERROR


class ApiError(DstuiError):
    """Raised when an API call fails or returns something we cannot decode."""

    def __init__(self, kind: ApiErrorKind, message: str, code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.code = code

    @classmethod
    def from_code(cls, code: int, reason: str | None = None) -> "ApiError":
        description = reason or API_ERROR_DESCRIPTIONS.get(code, "Unknown error")
        return cls(kind_for_code(code), f"{description} (code {code})", code)

    @classmethod
    def malformed(cls, detail: str) -> "ApiError":
        return cls(ApiErrorKind.MALFORMED, f"Malformed response: {detail}")


class CommandError(DstuiError):
    """Raised when a pause/resume/delete command fails."""

    def __init__(self, action: str, task_id: str, cause: DstuiError):
        super().__init__(f"{action.capitalize()} failed for {task_id}: {cause}")
        self.action = action
        self.task_id = task_id
        self.cause = cause

    @property
    def kind(self) -> ApiErrorKind | None:
        """The ApiErrorKind behind this failure, if it came from the API."""
        return self.cause.kind if isinstance(self.cause, ApiError) else None
