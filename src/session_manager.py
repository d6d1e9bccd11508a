"""
Authentication lifecycle for the LumberLogic client.

States: UNAUTHENTICATED -> (RESTORING) -> AUTHENTICATED. One credential pair
is persisted at a time. Identity-endpoint failures never surface as errors;
they just leave the user logged out. Only failing to start a login does.
A rejected credential is discarded; one that could not be checked because
the service was down is kept for the next start.
"""

from __future__ import annotations

import json
import logging
import threading
import webbrowser
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from api_client import ApiClient, ServerError, ServiceError, ServiceUnavailableError

logger = logging.getLogger(__name__)

WHOAMI_PATH = "/auth/whoami"
LOGIN_PATH = "/auth/login"
CREDENTIAL_PARAMS = ("accessToken", "refreshToken")


class LoginInitiationError(ServiceError):
    """Could not obtain an authorization URL from the identity provider."""
    pass


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    RESTORING = "restoring"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Credential"]:
        token = data.get("accessToken")
        if not token:
            return None
        refresh = data.get("refreshToken")
        return cls(access_token=str(token), refresh_token=str(refresh) if refresh else None)


@dataclass
class Identity:
    id: str
    name: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> "Identity":
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError(f"Identity payload has no id: {data!r}")
        extra = {k: v for k, v in data.items() if k not in ("id", "name")}
        return cls(id=str(data["id"]), name=str(data.get("name") or ""), extra=extra)


@dataclass
class Session:
    credential: Credential
    identity: Identity


# ═══════════════════════════════════════════════════════════════════════════
# Credential persistence
# ═══════════════════════════════════════════════════════════════════════════

class CredentialStore:
    """Single-slot credential file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[Credential]:
        if not self.path.is_file():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable credential file %s: %s", self.path, e)
            return None
        if not isinstance(data, dict):
            return None
        return Credential.from_dict(data)

    def save(self, credential: Credential) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(credential.to_dict(), f, indent=2)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


# ═══════════════════════════════════════════════════════════════════════════
# Callback URL helpers
# ═══════════════════════════════════════════════════════════════════════════

def credential_from_params(params: Mapping[str, Any]) -> Optional[Credential]:
    return Credential.from_dict(params)


def strip_credential_params(url: str) -> str:
    """Remove accessToken/refreshToken from a return URL's query string."""
    parts = urlsplit(url)
    kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k not in CREDENTIAL_PARAMS]
    return urlunsplit(parts._replace(query=urlencode(kept)))


# ═══════════════════════════════════════════════════════════════════════════
# Session manager
# ═══════════════════════════════════════════════════════════════════════════

class SessionManager:
    """Owns the current session and its persisted credential.

    Args:
        api: Backend client used for the identity and login endpoints.
        store: Where the credential pair is persisted.
        open_url: Called with the authorization URL by begin_login().
    """

    def __init__(self, api: ApiClient, store: CredentialStore,
                 open_url: Optional[Callable[[str], Any]] = None):
        self.api = api
        self.store = store
        self.open_url = open_url or webbrowser.open
        self.state = SessionState.UNAUTHENTICATED
        self.session: Optional[Session] = None
        self._lock = threading.Lock()
        self._identity_listeners: List[Callable[[], None]] = []

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.session is not None

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity if self.session else None

    @property
    def credential(self) -> Optional[Credential]:
        return self.session.credential if self.session else None

    def on_identity_change(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` on logout and whenever the logged-in identity changes."""
        self._identity_listeners.append(listener)

    def restore(self) -> SessionState:
        """Validate a previously persisted credential, if there is one."""
        previous = self.identity
        credential = self.store.load()
        if credential is None:
            self._set_unauthenticated()
        else:
            self.state = SessionState.RESTORING
            logger.info("Restoring saved session")
            self._authenticate(credential)
        self._notify_if_changed(previous)
        return self.state

    def begin_login(self, redirect_uri: Optional[str] = None) -> str:
        """Ask the identity provider where to log in and open that URL."""
        params = {"redirect_uri": redirect_uri} if redirect_uri else None
        try:
            data = self.api.request_json("GET", LOGIN_PATH, params=params)
        except ServiceError as e:
            raise LoginInitiationError(f"Could not start login: {e}") from e
        url = data.get("authorizationUrl") if isinstance(data, dict) else None
        if not url:
            raise LoginInitiationError("Could not start login: no authorization URL returned")
        logger.info("Opening authorization URL")
        self.open_url(url)
        return url

    def complete_login_from_callback(self, callback: Union[str, Mapping[str, Any]]) -> Optional[str]:
        """Consume the credential pair the provider redirected back with.

        Accepts the full return URL or its already-parsed query parameters.
        Returns the return URL with the credential stripped (None when a
        mapping was given).
        """
        if isinstance(callback, str):
            params = dict(parse_qsl(urlsplit(callback).query))
            cleaned: Optional[str] = strip_credential_params(callback)
        else:
            params = dict(callback)
            cleaned = None

        credential = credential_from_params(params)
        if credential is None:
            return cleaned

        with self._lock:
            if self.is_authenticated and self.credential == credential:
                logger.debug("Duplicate login callback ignored")
                return cleaned
            previous = self.identity
            self.store.save(credential)
            self._authenticate(credential)
            self._notify_if_changed(previous)
        return cleaned

    def logout(self) -> None:
        logger.info("Logging out")
        self.store.clear()
        self._set_unauthenticated()
        self._notify()

    def _authenticate(self, credential: Credential) -> None:
        try:
            data = self.api.request_json("GET", WHOAMI_PATH,
                                         access_token=credential.access_token)
            identity = Identity.from_payload(data)
        except (ServiceUnavailableError, ServerError) as e:
            # Credential may still be good; keep it for the next start.
            logger.warning("Identity check unavailable, continuing logged out: %s", e)
            self._set_unauthenticated()
            return
        except (ServiceError, ValueError) as e:
            logger.warning("Credential rejected, continuing logged out: %s", e)
            self.store.clear()
            self._set_unauthenticated()
            return
        self.session = Session(credential=credential, identity=identity)
        self.state = SessionState.AUTHENTICATED
        logger.info("Logged in as %s", identity.name or identity.id)

    def _set_unauthenticated(self) -> None:
        self.session = None
        self.state = SessionState.UNAUTHENTICATED

    def _notify_if_changed(self, previous: Optional[Identity]) -> None:
        current = self.identity
        if previous is None:
            return
        if current is None or current.id != previous.id:
            logger.info("Identity changed, closing identity-scoped views")
            self._notify()

    def _notify(self) -> None:
        for listener in self._identity_listeners:
            listener()
