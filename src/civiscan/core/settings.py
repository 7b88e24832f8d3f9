"""
Persisted Settings

Non-credential configuration entries kept in the same local key-value
storage as the credentials. Written by the settings flow and by the
config-link bootstrap; read when building a connection.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Optional

from ..config.schema import ClientConfig
from .credentials import URL_KEY, CredentialKind, CredentialStore
from .protocol import ProtocolVersion
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

API_VERSION_KEY = "civi_api_version"
SITE_KEY_KEY = "civi_site_key"
REST_PATH_KEY = "civi_rest_path"
GRACE_PERIOD_KEY = "civi_grace_period"
SHOW_PAST_EVENTS_KEY = "civi_show_past_events"
SORT_ORDER_KEY = "civi_sort_order"
CONFIG_LOCKED_KEY = "civi_config_locked"
AUTO_VALIDATE_KEY = "civiScan_autoValidate"

SETTINGS_KEYS = (
    URL_KEY,
    API_VERSION_KEY,
    SITE_KEY_KEY,
    REST_PATH_KEY,
    GRACE_PERIOD_KEY,
    SHOW_PAST_EVENTS_KEY,
    SORT_ORDER_KEY,
    CONFIG_LOCKED_KEY,
    AUTO_VALIDATE_KEY,
)


class SettingsStore:
    """Typed access to the persisted settings entries"""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def url(self) -> str:
        return self.storage.get(URL_KEY) or ""

    @property
    def api_version(self) -> Optional[ProtocolVersion]:
        value = self.storage.get(API_VERSION_KEY)
        return ProtocolVersion.parse(value) if value else None

    @property
    def is_config_locked(self) -> bool:
        return self.storage.get(CONFIG_LOCKED_KEY) is True

    @property
    def auto_validate(self) -> bool:
        return self.storage.get(AUTO_VALIDATE_KEY) is True

    def as_dict(self) -> Dict[str, Any]:
        return {key: self.storage.get(key) for key in SETTINGS_KEYS if self.storage.get(key) is not None}

    def apply_to(self, config: ClientConfig) -> ClientConfig:
        """Return a copy of `config` with stored settings layered on top"""
        backend = config.backend
        backend = replace(
            backend,
            url=self.url or backend.url,
            api_version=self.api_version or backend.api_version,
            site_key=self.storage.get(SITE_KEY_KEY) or backend.site_key,
            rest_path=self.storage.get(REST_PATH_KEY) or backend.rest_path,
        )

        roster = config.roster
        grace = self.storage.get(GRACE_PERIOD_KEY)
        show_past = self.storage.get(SHOW_PAST_EVENTS_KEY)
        roster = replace(
            roster,
            grace_period_minutes=int(grace) if grace is not None else roster.grace_period_minutes,
            show_past_events=bool(show_past) if show_past is not None else roster.show_past_events,
            sort_order=self.storage.get(SORT_ORDER_KEY) or roster.sort_order,
        )

        auto_validate = self.storage.get(AUTO_VALIDATE_KEY)
        scanner = config.scanner
        if auto_validate is not None:
            scanner = replace(scanner, auto_validate=bool(auto_validate))

        return replace(config, backend=backend, roster=roster, scanner=scanner)

    # =========================================================================
    # Writes
    # =========================================================================

    def save(
        self,
        url: str,
        api_version: Any = ProtocolVersion.V4,
        site_key: str = "",
        rest_path: str = "",
        grace_period: int = 30,
        show_past_events: bool = False,
        sort_order: str = "name_asc",
    ) -> None:
        self.storage.set(URL_KEY, url)
        self.storage.set(API_VERSION_KEY, ProtocolVersion.parse(api_version).value)
        self.storage.set(SITE_KEY_KEY, site_key)
        self.storage.set(REST_PATH_KEY, rest_path)
        self.storage.set(GRACE_PERIOD_KEY, grace_period)
        self.storage.set(SHOW_PAST_EVENTS_KEY, show_past_events)
        self.storage.set(SORT_ORDER_KEY, sort_order)

    def set_auto_validate(self, enabled: bool) -> None:
        self.storage.set(AUTO_VALIDATE_KEY, bool(enabled))

    def lock_config(self) -> None:
        self.storage.set(CONFIG_LOCKED_KEY, True)

    def clear_settings(self, credentials: CredentialStore) -> None:
        """Forget the connection: URL, API key and the config lock"""
        credentials.clear(CredentialKind.API_KEY)
        self.storage.remove(CONFIG_LOCKED_KEY)

    def logout(self, credentials: CredentialStore) -> None:
        """Remove every settings entry and every credential kind"""
        for key in SETTINGS_KEYS:
            self.storage.remove(key)
        credentials.clear_all()
        logger.info("Logged out: settings and credentials cleared")
