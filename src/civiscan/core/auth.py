"""
Auth Resolver

Determines the single active credential from what the CredentialStore holds.

Precedence: OAuthSession > MagicLinkToken > ApiKey.

- OAuthSession is active iff now < expiry.
- MagicLinkToken is active iff its payload decodes AND (exp absent OR now < exp).
  The signature is NOT verified here; trusting it is the backend's job and the
  client only reads `exp` as a hint.
- ApiKey is active iff both key and base URL are non-empty.

An expired or unparsable credential is treated as absent and resolution
falls through to the next kind in order.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Set

import jwt

from .credentials import (
    ApiKey,
    Credential,
    CredentialKind,
    CredentialStore,
    MagicLinkToken,
    OAuthSession,
)
from .errors import TokenInvalid

logger = logging.getLogger(__name__)

# Payload is read, never trusted
_UNVERIFIED = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


def decode_token_payload(token: str) -> Dict[str, Any]:
    """
    Decode a magic-link token payload without verifying its signature.

    Raises:
        TokenInvalid: token is not a decodable JWT or `exp` is not numeric
    """
    if not token or not isinstance(token, str):
        raise TokenInvalid("Empty token")

    try:
        payload = jwt.decode(token, options=_UNVERIFIED)
    except jwt.InvalidTokenError as e:
        raise TokenInvalid(f"Invalid magic token: {e}") from e

    exp = payload.get("exp")
    if exp is not None and (isinstance(exp, bool) or not isinstance(exp, (int, float))):
        raise TokenInvalid(f"Invalid magic token: non-numeric exp {exp!r}")

    return payload


def parse_magic_token(token: str) -> MagicLinkToken:
    """Build a MagicLinkToken with `exp` extracted from the payload"""
    payload = decode_token_payload(token)
    exp = payload.get("exp")
    return MagicLinkToken(token=token, exp=int(exp) if exp is not None else None)


class AuthResolver:
    """
    Resolves the active credential.

    Args:
        store: credential storage
        clock: returns current time in epoch seconds
        evict_expired: remove an expired magic token from storage when seen
        evict_invalid: remove an unparsable magic token from storage when seen
    """

    def __init__(
        self,
        store: CredentialStore,
        clock: Callable[[], float] = time.time,
        evict_expired: bool = True,
        evict_invalid: bool = False,
    ):
        self.store = store
        self.clock = clock
        self.evict_expired = evict_expired
        self.evict_invalid = evict_invalid
        # Tokens that failed to decode; never decoded again
        self._rejected_tokens: Set[str] = set()

    def resolve_active_credential(self) -> Optional[Credential]:
        """Return the highest-precedence active credential, or None"""
        now = self.clock()

        oauth = self._active_oauth(now)
        if oauth:
            return oauth

        magic = self._active_magic_token(now)
        if magic:
            return magic

        return self._active_api_key()

    def _active_oauth(self, now: float) -> Optional[OAuthSession]:
        session = self.store.get(CredentialKind.OAUTH_SESSION)
        if session is None:
            return None
        if now < session.expiry:
            return session

        logger.debug("OAuth session expired")
        return None

    def _active_magic_token(self, now: float) -> Optional[MagicLinkToken]:
        stored = self.store.get(CredentialKind.MAGIC_LINK)
        if stored is None:
            return None

        if stored.token in self._rejected_tokens:
            return None

        try:
            magic = parse_magic_token(stored.token)
        except TokenInvalid as e:
            logger.error(f"Invalid magic token: {e}")
            self._rejected_tokens.add(stored.token)
            if self.evict_invalid:
                self.store.clear(CredentialKind.MAGIC_LINK)
            return None

        if magic.exp is not None and now >= magic.exp:
            logger.warning("Magic token expired")
            if self.evict_expired:
                self.store.clear(CredentialKind.MAGIC_LINK)
            return None

        return magic

    def _active_api_key(self) -> Optional[ApiKey]:
        api_key = self.store.get(CredentialKind.API_KEY)
        if api_key and api_key.key and api_key.base_url:
            return api_key
        return None
