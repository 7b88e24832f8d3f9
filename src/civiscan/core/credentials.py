"""
Credentials and Credential Store

Three mutually exclusive credential sources can authenticate against the
backend. They are plain tagged records; precedence and expiry are decided
in one place, `AuthResolver` (see auth.py), never by the records themselves.

Storage keys:
    civi_url / civi_api_key   -> ApiKey
    civi_oauth_session        -> OAuthSession (JSON object)
    civi_magic_token          -> MagicLinkToken (raw token string)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .storage import KeyValueStorage

logger = logging.getLogger(__name__)


class CredentialKind(str, Enum):
    """Kind of stored credential, listed in precedence order"""
    OAUTH_SESSION = "oauth_session"
    MAGIC_LINK = "magic_link"
    API_KEY = "api_key"


@dataclass(frozen=True)
class ApiKey:
    """Static API key. Never expires client-side."""
    key: str
    base_url: str

    kind = CredentialKind.API_KEY

    def __repr__(self):
        return f"ApiKey(base_url={self.base_url!r}, key=***)"


@dataclass(frozen=True)
class OAuthSession:
    """OAuth access token; `expiry` (epoch seconds) is authoritative"""
    access_token: str
    expiry: float
    authority: str = ""

    kind = CredentialKind.OAUTH_SESSION

    def __repr__(self):
        return f"OAuthSession(authority={self.authority!r}, expiry={self.expiry!r}, access_token=***)"


@dataclass(frozen=True)
class MagicLinkToken:
    """
    Bearer token delivered through a magic link.

    `exp` (epoch seconds) is read from the token payload by the resolver.
    It is a client-side hint, not a security boundary: the signature is
    only ever checked by the backend.
    """
    token: str
    exp: Optional[int] = None

    kind = CredentialKind.MAGIC_LINK

    def __repr__(self):
        return f"MagicLinkToken(exp={self.exp!r}, token=***)"


Credential = Union[ApiKey, OAuthSession, MagicLinkToken]

_CREDENTIAL_TYPES = {
    CredentialKind.API_KEY: ApiKey,
    CredentialKind.OAUTH_SESSION: OAuthSession,
    CredentialKind.MAGIC_LINK: MagicLinkToken,
}

URL_KEY = "civi_url"
API_KEY_KEY = "civi_api_key"
OAUTH_SESSION_KEY = "civi_oauth_session"
MAGIC_TOKEN_KEY = "civi_magic_token"


class CredentialStore:
    """
    Persists raw credential material in local key-value storage.

    Pure storage: no validation, no expiry checks. Each kind can be
    cleared independently so logout can invalidate all of them.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def get(self, kind: CredentialKind) -> Optional[Credential]:
        """Return the stored credential of `kind`, or None"""
        if kind == CredentialKind.API_KEY:
            key = self.storage.get(API_KEY_KEY)
            if key is None:
                return None
            return ApiKey(key=key, base_url=self.storage.get(URL_KEY) or "")

        if kind == CredentialKind.OAUTH_SESSION:
            data = self.storage.get(OAUTH_SESSION_KEY)
            if not isinstance(data, dict) or not data.get("access_token"):
                return None
            try:
                expiry = float(data.get("expires_at") or 0)
            except (TypeError, ValueError):
                logger.error(f"Ignoring stored OAuth session with malformed expiry {data.get('expires_at')!r}")
                return None
            return OAuthSession(
                access_token=data["access_token"],
                expiry=expiry,
                authority=data.get("authority", ""),
            )

        if kind == CredentialKind.MAGIC_LINK:
            token = self.storage.get(MAGIC_TOKEN_KEY)
            return MagicLinkToken(token=token) if token else None

        raise ValueError(f"Unknown credential kind: {kind}")

    def set(self, kind: CredentialKind, credential: Credential) -> None:
        """Store `credential` under `kind`, overwriting any previous value"""
        expected = _CREDENTIAL_TYPES[CredentialKind(kind)]
        if not isinstance(credential, expected):
            raise TypeError(f"{kind.value} expects {expected.__name__}, got {type(credential).__name__}")

        if isinstance(credential, ApiKey):
            self.storage.set(URL_KEY, credential.base_url)
            self.storage.set(API_KEY_KEY, credential.key)
        elif isinstance(credential, OAuthSession):
            self.storage.set(OAUTH_SESSION_KEY, {
                "access_token": credential.access_token,
                "expires_at": credential.expiry,
                "authority": credential.authority,
            })
        else:
            self.storage.set(MAGIC_TOKEN_KEY, credential.token)

        logger.info(f"Stored credential: {kind.value}")

    def clear(self, kind: CredentialKind) -> None:
        """Remove only the credential of `kind`"""
        if kind == CredentialKind.API_KEY:
            self.storage.remove(URL_KEY)
            self.storage.remove(API_KEY_KEY)
        elif kind == CredentialKind.OAUTH_SESSION:
            self.storage.remove(OAUTH_SESSION_KEY)
        elif kind == CredentialKind.MAGIC_LINK:
            self.storage.remove(MAGIC_TOKEN_KEY)
        else:
            raise ValueError(f"Unknown credential kind: {kind}")

        logger.debug(f"Cleared credential: {kind.value}")

    def clear_all(self) -> None:
        for kind in CredentialKind:
            self.clear(kind)
