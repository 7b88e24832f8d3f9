"""
Link bootstrap

A page load may carry setup material in its query string:

    ?config=<base64 JSON {url, apiKey, siteKey, restPath, apiVersion}>
        Saves the connection settings and API key, then locks the config.

    ?token=<magic-link JWT>[&target=<url>]
        Probes the backend with the token; stores it only on success.

Either way the sensitive parameter is removed from the URL handed back,
so it does not linger in history or bookmarks.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..core.client import ApiClient, TokenValidation
from ..core.credentials import ApiKey, CredentialKind, CredentialStore, MagicLinkToken
from ..core.errors import TokenInvalid
from ..core.settings import SettingsStore

logger = logging.getLogger(__name__)

SENSITIVE_PARAMS = ("config", "token", "target")

# URL-safe alphabet, and "+" decoded to a space by query parsing
_TO_STANDARD_B64 = str.maketrans({"-": "+", "_": "/", " ": "+"})


@dataclass
class BootstrapResult:
    """What a bootstrap link did"""
    kind: str                        # "config", "magic_link" or "none"
    clean_url: str
    status: Optional[str] = None     # "saved" or a TokenValidation value
    target: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in ("saved", TokenValidation.SUCCESS.value)


def encode_config_link(settings: Dict[str, Any]) -> str:
    """Base64 payload for a `?config=` link"""
    return base64.b64encode(json.dumps(settings).encode("utf-8")).decode("ascii")


def decode_config_link(payload: str) -> Dict[str, Any]:
    """
    Decode a `?config=` payload.

    Raises:
        TokenInvalid: not base64 JSON, or url / apiKey missing
    """
    try:
        padded = payload + "=" * (-len(payload) % 4)
        raw = base64.b64decode(padded.translate(_TO_STANDARD_B64), validate=True)
        settings = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise TokenInvalid(f"Invalid config link: {e}") from e

    if not isinstance(settings, dict) or not settings.get("url") or not settings.get("apiKey"):
        raise TokenInvalid("Invalid config link: url and apiKey are required")
    return settings


def strip_params(url: str, names=SENSITIVE_PARAMS) -> str:
    """Remove query parameters from a URL, keeping everything else"""
    parts = urlsplit(url)
    kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in names]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


def apply_config_link(payload: str, settings: SettingsStore, credentials: CredentialStore) -> Dict[str, Any]:
    """Persist a decoded config link and lock the configuration"""
    data = decode_config_link(payload)

    settings.save(
        url=data["url"],
        api_version=data.get("apiVersion") or "3",
        site_key=data.get("siteKey") or "",
        rest_path=data.get("restPath") or "",
    )
    credentials.set(CredentialKind.API_KEY, ApiKey(key=data["apiKey"], base_url=data["url"]))
    settings.lock_config()

    logger.info(f"Configuration loaded from link for {data['url']}")
    return data


async def bootstrap_from_url(
    url: str,
    client: ApiClient,
    settings: SettingsStore,
    credentials: CredentialStore,
    base_url: Optional[str] = None,
) -> BootstrapResult:
    """
    Handle a bootstrap link.

    Raises:
        TokenInvalid: a `config` payload could not be decoded
    """
    params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
    clean_url = strip_params(url)

    if params.get("config"):
        apply_config_link(params["config"], settings, credentials)
        return BootstrapResult(kind="config", clean_url=clean_url, status="saved")

    token = params.get("token")
    if token:
        status = await client.validate_token(token, base_url)
        if status == TokenValidation.SUCCESS:
            credentials.set(CredentialKind.MAGIC_LINK, MagicLinkToken(token=token))
            logger.info("Magic link token validated and stored")
        else:
            logger.warning(f"Magic link token rejected: {status.value}")

        return BootstrapResult(
            kind="magic_link",
            clean_url=clean_url,
            status=status.value,
            target=params.get("target") if status == TokenValidation.SUCCESS else None,
        )

    return BootstrapResult(kind="none", clean_url=url)
