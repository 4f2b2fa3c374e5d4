"""HTTP(S) transport for the Download Station WebAPI."""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import requests
import urllib3

from .errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# Query parameters that must never reach a log file
_REDACTED_PARAMS = frozenset({"passwd", "_sid", "otp_code"})

INSECURE_WARNING = (
    "Certificate validation is disabled: any certificate is accepted, "
    "so the connection to the server can be intercepted or altered."
)


@dataclass(frozen=True)
class RawResponse:
    """An HTTP response, undecoded."""

    status: int
    body: str
    url: str = ""


def redact(params: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of params safe for logging."""
    if not params:
        return {}
    return {k: ("***" if k in _REDACTED_PARAMS else v) for k, v in params.items()}


def validate_base_url(base_url: str) -> str:
    """Check that base_url is http(s)://host[:port] and return it without a trailing slash.

    Raises:
        ValueError: If the address cannot be used to build requests.
    """
    parts = urlsplit(base_url)
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"unsupported scheme in server address: {base_url!r}")
    if not parts.hostname:
        raise ValueError(f"missing host in server address: {base_url!r}")
    try:
        parts.port  # raises on a non-numeric or out-of-range port
    except ValueError as exc:
        raise ValueError(f"invalid port in server address: {base_url!r}") from exc
    return base_url.rstrip("/")


class Transport:
    """Issues requests against one server. Holds no session state.

    Certificate validation is fixed at construction and applies to every
    request. Retrying is the caller's business.
    """

    def __init__(
        self,
        base_url: str | None = None,
        verify_certificates: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.base_url = validate_base_url(base_url) if base_url else None
        self.verify_certificates = verify_certificates
        self.timeout = timeout
        self._http = session or requests.Session()
        self._http.verify = verify_certificates

        if not verify_certificates:
            # Warn once here instead of once per request
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            logger.warning(INSECURE_WARNING)

    def rebase(self, base_url: str) -> None:
        """Point the transport at another server address."""
        self.base_url = validate_base_url(base_url)

    def url_for(self, path: str) -> str:
        if self.base_url is None:
            raise TransportError("No server address configured")
        return f"{self.base_url}/{path.lstrip('/')}"

    def send(self, method: str, path: str, params: dict[str, Any] | None = None) -> RawResponse:
        """Send one request and return the raw response.

        Raises:
            TransportError: On connection errors, TLS failures and timeouts.
        """
        url = self.url_for(path)
        logger.debug("%s %s %s", method, url, redact(params))
        try:
            response = self._http.request(
                method,
                url,
                params=params,
                timeout=self.timeout,
                verify=self.verify_certificates,
            )
        except requests.exceptions.Timeout as exc:
            raise TransportError(f"Request to {self.base_url} timed out after {self.timeout:g}s") from exc
        except requests.exceptions.SSLError as exc:
            raise TransportError(f"TLS error talking to {self.base_url}: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            raise TransportError(f"Cannot connect to {self.base_url}") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Request to {self.base_url} failed: {exc}") from exc

        logger.debug("-> HTTP %s (%d bytes)", response.status_code, len(response.content))
        return RawResponse(status=response.status_code, body=response.text, url=url)

    def close(self) -> None:
        self._http.close()
