"""
Check-in session wiring

Builds the storage, credential store, settings and API client for one
configured connection, and hands out scanners and rosters bound to it.
"""

import logging
from typing import Optional

from .config.schema import ClientConfig
from .core.auth import AuthResolver
from .core.client import ApiClient
from .core.credentials import CredentialStore
from .core.settings import SettingsStore
from .core.signals import SignalBus
from .core.storage import KeyValueStorage, create_storage
from .roster import Roster
from .scanner import Notifier, ScanProcessor
from .services.events import get_event, is_event_writable

logger = logging.getLogger(__name__)


class CheckInSession:
    """
    Everything needed to talk to one backend.

    The `unauthorized` bus is shared by every client this session builds,
    so one subscriber sees a 401 from any of them.
    """

    def __init__(self, config: ClientConfig, storage: Optional[KeyValueStorage] = None):
        self.storage = storage or create_storage(config.storage.type, config.storage.path)
        self.credentials = CredentialStore(self.storage)
        self.settings = SettingsStore(self.storage)
        self.config = self.settings.apply_to(config)
        self.unauthorized = SignalBus("unauthorized")
        self.resolver = AuthResolver(self.credentials)
        self.client = self._build_client()

    def _build_client(self) -> ApiClient:
        return ApiClient(
            self.config,
            self.credentials,
            resolver=self.resolver,
            unauthorized=self.unauthorized,
        )

    async def reload(self, base_config: ClientConfig) -> None:
        """Rebuild the client after the persisted settings changed"""
        await self.client.close()
        self.config = self.settings.apply_to(base_config)
        self.client = self._build_client()

    async def close(self) -> None:
        await self.client.close()

    async def write_gate(self, event_id: int):
        """Callable reporting whether `event_id` still accepts check-ins"""
        event = await get_event(self.client, event_id)
        grace = self.config.roster.grace_period_minutes
        return lambda: is_event_writable(event, grace)

    def scanner(self, event_id: int, notifier: Optional[Notifier] = None, camera=None, can_write=None) -> ScanProcessor:
        scanner_config = self.config.scanner
        return ScanProcessor(
            self.client,
            event_id,
            notifier=notifier,
            camera=camera,
            auto_validate=scanner_config.auto_validate,
            debounce_ms=scanner_config.debounce_ms,
            attended_status=self.config.statuses.attended,
            already_attended_reset_ms=scanner_config.already_attended_reset_ms,
            can_write=can_write,
        )

    def roster(self, event_id: int, notifier: Optional[Notifier] = None, can_write=None) -> Roster:
        return Roster(
            self.client,
            event_id,
            statuses=self.config.statuses,
            poll_interval=self.config.roster.poll_interval_seconds,
            can_write=can_write,
            notifier=notifier,
        )

    def logout(self) -> None:
        self.settings.logout(self.credentials)
