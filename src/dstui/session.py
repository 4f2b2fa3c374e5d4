"""Session management: API discovery, login, and transparent re-authentication."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, TypeVar

from .envelope import decode_envelope
from .errors import ApiError, ApiErrorKind, AuthError, AuthErrorKind, DstuiError
from .models import Credentials, SessionToken
from .transport import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

INFO_API = "SYNO.API.Info"
AUTH_API = "SYNO.API.Auth"
TASK_API = "SYNO.DownloadStation.Task"
STATION_INFO_API = "SYNO.DownloadStation.Info"

# Login session name; scopes the sid to Download Station
SESSION_NAME = "DownloadStation"


@dataclass(frozen=True)
class ApiInfo:
    """Where an API lives and which version to speak."""

    path: str
    max_version: int
    min_version: int = 1


# Used when SYNO.API.Info answers with something we cannot read
DEFAULT_APIS: dict[str, ApiInfo] = {
    AUTH_API: ApiInfo("auth.cgi", 3),
    TASK_API: ApiInfo("DownloadStation/task.cgi", 1),
    STATION_INFO_API: ApiInfo("DownloadStation/info.cgi", 1),
}


class SessionManager:
    """Owns the one session token and runs calls with it.

    Re-authentication is single-flight: when several callers see the same
    token expire at once, the first one logs in again and the rest reuse the
    token it obtained.
    """

    def __init__(self, transport: Transport, credentials: Credentials | None = None):
        self._transport = transport
        self._credentials = credentials
        self._token: SessionToken | None = None
        self._lock = threading.Lock()  # guards login/refresh
        self._discovery_lock = threading.Lock()
        self._apis: dict[str, ApiInfo] | None = None
        self.login_count = 0
        if credentials is not None:
            transport.rebase(credentials.base_url)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    @property
    def token(self) -> SessionToken | None:
        return self._token

    def set_credentials(self, credentials: Credentials) -> None:
        """Replace the credentials and drop the current token."""
        with self._lock:
            self._use(credentials)

    def _use(self, credentials: Credentials) -> None:
        """Switch to new credentials. Caller must hold self._lock."""
        if self._credentials is None or self._credentials.base_url != credentials.base_url:
            self._transport.rebase(credentials.base_url)
            with self._discovery_lock:
                self._apis = None
        self._credentials = credentials
        self._token = None

    # --- API discovery ---

    def api_info(self, name: str) -> ApiInfo:
        """Look up an API, querying SYNO.API.Info on first use.

        Raises:
            TransportError: If the server cannot be reached.
        """
        with self._discovery_lock:
            if self._apis is None:
                self._apis = self._discover()
            return self._apis.get(name) or DEFAULT_APIS[name]

    def _discover(self) -> dict[str, ApiInfo]:
        raw = self._transport.send(
            "GET",
            "webapi/query.cgi",
            {
                "api": INFO_API,
                "version": "1",
                "method": "query",
                "query": ",".join([AUTH_API, TASK_API, STATION_INFO_API]),
            },
        )
        try:
            data = decode_envelope(raw)
        except ApiError as exc:
            logger.warning("API discovery failed (%s), using default API paths", exc)
            return dict(DEFAULT_APIS)

        apis = dict(DEFAULT_APIS)
        if not isinstance(data, dict):
            logger.warning("API discovery returned no data, using default API paths")
            return apis
        for name, info in data.items():
            if not isinstance(info, dict):
                continue
            path = info.get("path")
            max_version = info.get("maxVersion")
            if isinstance(path, str) and isinstance(max_version, int):
                min_version = info.get("minVersion")
                apis[name] = ApiInfo(path, max_version, min_version if isinstance(min_version, int) else 1)
        logger.debug("Discovered APIs: %s", {k: (v.path, v.max_version) for k, v in apis.items()})
        return apis

    # --- Authentication ---

    def authenticate(self, credentials: Credentials | None = None) -> SessionToken:
        """Log in and hold the new token.

        Raises:
            AuthError: INVALID_CREDENTIALS when the server rejects the account,
                UNAVAILABLE when it cannot issue a session right now.
            TransportError: If the server cannot be reached.
        """
        with self._lock:
            if credentials is not None:
                self._use(credentials)
            return self._login()

    def _login(self) -> SessionToken:
        """Perform SYNO.API.Auth login. Caller must hold self._lock."""
        credentials = self._credentials
        if credentials is None:
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "No credentials configured")

        info = self.api_info(AUTH_API)
        raw = self._transport.send(
            "GET",
            f"webapi/{info.path}",
            {
                "api": AUTH_API,
                "version": str(info.max_version),
                "method": "login",
                "account": credentials.username,
                "passwd": credentials.secret,
                "session": SESSION_NAME,
                "format": "sid",
            },
        )
        try:
            data = decode_envelope(raw)
        except ApiError as exc:
            if exc.code is not None:
                raise AuthError.from_code(exc.code) from exc
            raise AuthError(AuthErrorKind.UNAVAILABLE, f"Login failed: {exc}") from exc

        sid = data.get("sid") if isinstance(data, dict) else None
        if not isinstance(sid, str) or not sid:
            raise AuthError(AuthErrorKind.UNAVAILABLE, "Login response carried no session id")

        self._token = SessionToken(sid)
        self.login_count += 1
        logger.info("Logged in to %s as %s", self._transport.base_url, credentials.username)
        return self._token

    def _ensure_token(self) -> SessionToken:
        token = self._token
        if token is not None:
            return token
        with self._lock:
            if self._token is None:
                return self._login()
            return self._token

    def _refresh(self, stale: SessionToken) -> SessionToken:
        """Replace an expired token, unless another caller already did."""
        with self._lock:
            if self._token is not None and self._token is not stale:
                return self._token
            self._token = None
            logger.info("Session expired, logging in again")
            return self._login()

    def with_session(self, fn: Callable[[SessionToken], T]) -> T:
        """Run fn with a valid token, re-authenticating and retrying once on expiry."""
        token = self._ensure_token()
        try:
            return fn(token)
        except ApiError as exc:
            if exc.kind is not ApiErrorKind.AUTH_EXPIRED:
                raise
            logger.debug("Call reported an invalid session: %s", exc)
            token = self._refresh(token)
        return fn(token)

    def logout(self) -> None:
        """End the server-side session. Best effort; errors are only logged."""
        with self._lock:
            token, self._token = self._token, None
        if token is None:
            return
        try:
            info = self.api_info(AUTH_API)
            raw = self._transport.send(
                "GET",
                f"webapi/{info.path}",
                {
                    "api": AUTH_API,
                    "version": str(info.max_version),
                    "method": "logout",
                    "session": SESSION_NAME,
                    "_sid": token.value,
                },
            )
            decode_envelope(raw)
            logger.info("Logged out")
        except DstuiError as exc:
            logger.debug("Logout failed: %s", exc)
