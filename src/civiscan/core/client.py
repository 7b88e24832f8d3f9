"""
CiviCRM API Client

Orchestrates AuthResolver and ProtocolAdapter for every call:

    resolve credential -> build wire request -> HTTP -> normalize response

Failures are translated into the CiviScan error taxonomy. An HTTP 401
additionally fires the `unauthorized` signal before the error propagates,
so any number of listeners (e.g. a session-expired prompt) can react.
Nothing is retried here; retry policy belongs to callers.
"""

import logging
from enum import Enum
from typing import Any, Mapping, Optional, Union

import httpx

from ..config.schema import ClientConfig
from .auth import AuthResolver, parse_magic_token
from .credentials import ApiKey, Credential, CredentialStore, MagicLinkToken
from .errors import BackendError, CiviScanError, ConfigMissing, NetworkError, TokenInvalid
from .protocol import ApiQuery, ApiRequest, ApiResponse, ProtocolAdapter, WireRequest, get_adapter
from .signals import SignalBus

logger = logging.getLogger(__name__)

# Known APIv3 rest.php locations across CMS integrations, tried in order
REST_PATH_CANDIDATES = [
    "/modules/contrib/civicrm/extern/rest.php",
    "/libraries/civicrm/extern/rest.php",
    "/sites/all/modules/civicrm/extern/rest.php",
    "/vendor/civicrm/civicrm-core/extern/rest.php",
    "/civicrm/extern/rest.php",
    "/wp-content/plugins/civicrm/civicrm/extern/rest.php",
]


class TokenValidation(str, Enum):
    """Outcome of probing a magic-link token before it is trusted"""
    SUCCESS = "success"
    PERMISSION_DENIED = "permission_denied"
    UNAUTHORIZED = "unauthorized"
    CONNECTION_ERROR = "connection_error"


class ApiClient:
    """
    CiviCRM API client for one configured connection.

    Example:
        async with ApiClient(config, CredentialStore(storage)) as client:
            response = await client.call("Participant", "get", {"where": [["id", "=", 1042]]})
            for record in response.values:
                ...
    """

    def __init__(
        self,
        config: ClientConfig,
        credentials: CredentialStore,
        resolver: Optional[AuthResolver] = None,
        unauthorized: Optional[SignalBus] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.credentials = credentials
        self.resolver = resolver or AuthResolver(credentials)
        self.unauthorized = unauthorized or SignalBus("unauthorized")
        self.adapter: ProtocolAdapter = get_adapter(
            config.backend.api_version,
            rest_path=config.backend.rest_path,
            site_key=config.backend.site_key,
            ajax_path=config.backend.ajax_path,
        )
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=config.backend.timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP client (only if this instance created it)"""
        if self._owns_http:
            await self.http.aclose()

    # =========================================================================
    # Calls
    # =========================================================================

    async def call(
        self,
        entity: str,
        action: str,
        query: Union[ApiQuery, Mapping[str, Any], None] = None,
    ) -> ApiResponse:
        """
        Perform one API call with the active credential.

        Raises:
            ConfigMissing: no active credential or no base URL
            BackendError: the backend rejected the request (status attached)
            NetworkError: no response received
        """
        credential = self.resolver.resolve_active_credential()
        if credential is None:
            raise ConfigMissing("No active credential configured")

        request = ApiRequest(entity, action, ApiQuery.from_value(query))
        return await self._execute(request, credential, self._base_url_for(credential))

    async def get_current_contact(self) -> Optional[Mapping[str, Any]]:
        """The contact record of the authenticated user, or None on any failure"""
        try:
            response = await self.call("Contact", "get", ApiQuery(
                select=["display_name", "email_primary.email"],
                where=[["id", "=", "user_contact_id"]],
                limit=1,
            ))
        except CiviScanError as e:
            logger.error(f"Failed to fetch current user: {e}")
            return None
        return response.first

    async def validate_token(self, token: str, base_url: Optional[str] = None) -> TokenValidation:
        """
        Probe the backend with `token` before it is stored.

        Uses a minimal read-only request. Does not fire the unauthorized
        signal: the token was never part of the session.
        """
        try:
            credential = parse_magic_token(token)
        except TokenInvalid as e:
            logger.warning(f"Rejecting magic token: {e}")
            return TokenValidation.UNAUTHORIZED

        base_url = base_url or self.config.bearer_base_url
        if not base_url:
            return TokenValidation.CONNECTION_ERROR

        try:
            await self._execute(self.adapter.probe_request(), credential, base_url, signal=False)
        except BackendError as e:
            if e.status == 401:
                return TokenValidation.UNAUTHORIZED
            if e.status == 403:
                return TokenValidation.PERMISSION_DENIED
            logger.error(f"Token validation failed: {e}")
            return TokenValidation.CONNECTION_ERROR
        except NetworkError as e:
            logger.error(f"Token validation failed: {e}")
            return TokenValidation.CONNECTION_ERROR

        return TokenValidation.SUCCESS

    async def check_connection(self, url: str, api_key: str) -> bool:
        """Settings-time connectivity check with an explicit API key; never raises"""
        try:
            await self._execute(self.adapter.probe_request(), ApiKey(key=api_key, base_url=url), url, signal=False)
        except CiviScanError as e:
            logger.debug(f"Connection check failed for {url}: {e}")
            return False
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _base_url_for(self, credential: Credential) -> str:
        if isinstance(credential, ApiKey):
            base_url = credential.base_url or self.config.backend.url
        elif isinstance(credential, MagicLinkToken):
            base_url = self.config.bearer_base_url
        else:
            base_url = credential.authority or self.config.bearer_base_url

        if not base_url:
            raise ConfigMissing("No backend URL configured")
        return base_url

    async def _execute(
        self,
        request: ApiRequest,
        credential: Credential,
        base_url: str,
        signal: bool = True,
    ) -> ApiResponse:
        wire = self.adapter.build_request(request, credential, base_url)
        logger.debug(f"API{self.adapter.version.value} {request.entity}.{request.action}")

        body, status = await self._send(wire, signal=signal)

        try:
            return self.adapter.parse_response(body)
        except BackendError as e:
            if e.status is None:
                e.status = status
            logger.error(f"CiviCRM API error on {request.entity}.{request.action}: {e.message}")
            raise

    async def _send(self, wire: WireRequest, signal: bool = True):
        try:
            response = await self.http.request(
                wire.method,
                wire.url,
                headers=wire.headers,
                params=wire.params or None,
                data=wire.data or None,
            )
        except httpx.RequestError as e:
            logger.error(f"CiviCRM API connection error: {e}")
            raise NetworkError(f"Connection error: {e}") from e

        if response.status_code == 401 and signal:
            logger.warning("CiviCRM API returned 401, session expired")
            self.unauthorized.emit()

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = self._error_message(e.response)
            logger.error(f"CiviCRM API HTTP error: {e.response.status_code} - {message}")
            raise BackendError(status=e.response.status_code, message=message) from e

        try:
            return response.json(), response.status_code
        except ValueError as e:
            raise BackendError(status=response.status_code, message="Invalid JSON in response") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, Mapping):
            return body.get("error_message") or body.get("message") or response.reason_phrase
        return response.reason_phrase


async def detect_rest_path(client: ApiClient, url: str, api_key: str) -> Optional[str]:
    """
    Find the APIv3 rest.php location of a site.

    Tries each known path with a probe call and returns the first that
    answers, or None.
    """
    original = client.adapter
    try:
        for path in REST_PATH_CANDIDATES:
            client.adapter = get_adapter("3", rest_path=path, site_key=client.config.backend.site_key)
            if await client.check_connection(url, api_key):
                logger.info(f"Found APIv3 endpoint at {path}")
                return path
    finally:
        client.adapter = original

    logger.info(f"No APIv3 endpoint found for {url}")
    return None
