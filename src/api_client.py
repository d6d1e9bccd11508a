"""
HTTP plumbing shared by the optimizer, identity and history endpoints.

All calls go through one requests.Session against a single backend base URL.
Status checking and transport-error translation live here so the feature
clients only deal with the error hierarchy below.
"""
import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://lumberlogic-backend.onrender.com"
DEFAULT_CREDENTIALS_PATH = str(Path.home() / ".lumberlogic" / "credentials.json")

# The backend is suspended between uses and needs a warm-up window.
WARM_UP_MESSAGE = (
    "The optimization service is starting up. "
    "Please wait a few seconds and try again."
)


class ServiceError(Exception):
    """Base exception for backend errors."""
    pass


class ServiceUnavailableError(ServiceError):
    """Request never reached the service (refused, DNS, timeout)."""

    def __init__(self, message: str = WARM_UP_MESSAGE):
        super().__init__(message)


class ServiceAPIError(ServiceError):
    """Service answered with a non-success status."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class UnauthenticatedError(ServiceAPIError):
    """Operation needs an authenticated session, or the credential was rejected."""

    def __init__(self, message: str = "Not logged in", status_code: int = 401):
        super().__init__(message, status_code)


class ServerError(ServiceAPIError):
    """Service answered 5xx; says nothing about the request itself."""
    pass


class MalformedResponseError(ServiceError):
    """Service answered 2xx with a body we cannot interpret."""
    pass


@dataclass
class ServiceConfig:
    """Backend location and timeouts."""
    base_url: str = DEFAULT_BASE_URL
    optimize_timeout_seconds: float = 60.0    # generous, tolerates cold starts
    request_timeout_seconds: float = 15.0
    credentials_path: str = DEFAULT_CREDENTIALS_PATH

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        config = cls()
        base_url = os.environ.get("LUMBERLOGIC_API_URL")
        if base_url:
            config.base_url = base_url
        timeout = os.environ.get("LUMBERLOGIC_TIMEOUT")
        if timeout:
            try:
                config.optimize_timeout_seconds = float(timeout)
            except ValueError:
                logger.warning("Ignoring invalid LUMBERLOGIC_TIMEOUT=%r", timeout)
        credentials = os.environ.get("LUMBERLOGIC_CREDENTIALS")
        if credentials:
            config.credentials_path = credentials
        return config


class ApiClient:
    """Thin JSON client for the LumberLogic backend.

    Args:
        config: Backend location and timeouts.
        http: Object with a requests.Session-compatible ``request`` method.
            A fresh ``requests.Session`` is created when omitted.
    """

    def __init__(self, config: Optional[ServiceConfig] = None, http=None):
        self.config = config or ServiceConfig()
        self.http = http if http is not None else requests.Session()

    def url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def request(self, method: str, path: str, access_token: Optional[str] = None,
                timeout: Optional[float] = None, **kwargs) -> requests.Response:
        """Send a request; transport failures become ServiceUnavailableError."""
        if timeout is None:
            timeout = self.config.request_timeout_seconds
        try:
            return self.http.request(
                method, self.url(path),
                headers=self._headers(access_token), timeout=timeout, **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning("%s %s unreachable: %s", method, path, e)
            raise ServiceUnavailableError() from e

    def request_json(self, method: str, path: str,
                     access_token: Optional[str] = None,
                     timeout: Optional[float] = None, **kwargs) -> Any:
        """Send a request, check its status and return the decoded JSON body."""
        resp = self.request(method, path, access_token=access_token,
                            timeout=timeout, **kwargs)
        self._check_response(resp)
        return decode_json(resp)

    def _check_response(self, resp):
        """Check HTTP response for errors."""
        if resp.status_code in (401, 403):
            raise UnauthenticatedError(
                error_message(resp, "Session expired or invalid"),
                resp.status_code,
            )
        if resp.status_code >= 500:
            raise ServerError(
                error_message(resp, f"Request failed ({resp.status_code})"),
                resp.status_code,
            )
        if resp.status_code >= 400:
            raise ServiceAPIError(
                error_message(resp, f"Request failed ({resp.status_code})"),
                resp.status_code,
            )


def decode_json(resp) -> Any:
    """Decode a 2xx body, treating an empty body as an empty object."""
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as e:
        raise MalformedResponseError(f"Response is not JSON: {e}") from e


def error_message(resp, default: str) -> str:
    """Pull the structured ``{"error": ...}`` message out of a failed response."""
    try:
        data = resp.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default
