"""
CiviScan core

- credentials / storage: raw credential material in local key-value storage
- auth: resolution of the single active credential
- protocol: APIv3 / APIv4 request encoding and response normalization
- client: the ApiClient tying them together (import from .client)
"""

from .auth import AuthResolver, decode_token_payload, parse_magic_token
from .credentials import (
    ApiKey,
    Credential,
    CredentialKind,
    CredentialStore,
    MagicLinkToken,
    OAuthSession,
)
from .errors import (
    BackendError,
    CiviScanError,
    ConfigMissing,
    EventClosed,
    NetworkError,
    NotFound,
    TokenInvalid,
    WriteInProgress,
)
from .models import Event, Participant
from .protocol import (
    ApiQuery,
    ApiRequest,
    ApiResponse,
    ProtocolAdapter,
    ProtocolVersion,
    V3Protocol,
    V4Protocol,
    WireRequest,
    get_adapter,
    parse_response,
)
from .signals import SignalBus
from .storage import FileStorage, KeyValueStorage, MemoryStorage

__all__ = [
    "AuthResolver",
    "decode_token_payload",
    "parse_magic_token",
    "ApiKey",
    "Credential",
    "CredentialKind",
    "CredentialStore",
    "MagicLinkToken",
    "OAuthSession",
    "BackendError",
    "CiviScanError",
    "ConfigMissing",
    "EventClosed",
    "NetworkError",
    "NotFound",
    "TokenInvalid",
    "WriteInProgress",
    "Event",
    "Participant",
    "ApiQuery",
    "ApiRequest",
    "ApiResponse",
    "ProtocolAdapter",
    "ProtocolVersion",
    "V3Protocol",
    "V4Protocol",
    "WireRequest",
    "get_adapter",
    "parse_response",
    "SignalBus",
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
]
