"""
CiviScan Configuration Schema

Defines the configuration structure for the check-in client.
All configuration can be specified via civiscan.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path

from ..core.protocol import DEFAULT_AJAX_PATH, DEFAULT_REST_PATH, ProtocolVersion


@dataclass
class BackendConfig:
    """Connection to the CiviCRM backend"""
    url: str = ""
    api_version: ProtocolVersion = ProtocolVersion.V4
    site_key: str = ""
    rest_path: str = DEFAULT_REST_PATH   # APIv3 only
    ajax_path: str = DEFAULT_AJAX_PATH   # APIv4 only
    timeout: float = 30.0


@dataclass
class OAuthConfig:
    """OAuth / magic-link bearer mode"""
    enabled: bool = False
    authority: str = ""
    client_id: str = ""


@dataclass
class ScannerConfig:
    """Scan processing behaviour"""
    debounce_ms: int = 3000
    auto_validate: bool = False
    # Auto-return to scanning after showing "already checked in"; None keeps it manual
    already_attended_reset_ms: Optional[int] = None


@dataclass
class RosterConfig:
    """Participant roster behaviour"""
    poll_interval_seconds: float = 30.0
    grace_period_minutes: int = 30
    show_past_events: bool = False
    sort_order: str = "name_asc"


@dataclass
class StatusConfig:
    """
    Participant status ids. These are backend configuration conventions,
    so they are configured rather than hardcoded.
    """
    attended: int = 2
    registered: int = 1


@dataclass
class StorageConfig:
    """Local key-value storage for settings and credentials"""
    type: str = "file"
    path: str = "~/.civiscan/storage.json"


@dataclass
class ClientConfig:
    """
    Central configuration for the check-in client.

    Example civiscan.yaml:
    ```yaml
    backend:
      url: "https://crm.example.org"
      api_version: 4
      site_key: "${CIVI_SITE_KEY:-}"

    scanner:
      auto_validate: false

    roster:
      poll_interval_seconds: 30
      grace_period_minutes: 30

    statuses:
      attended: 2
      registered: 1
    ```
    """
    backend: BackendConfig = field(default_factory=BackendConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    roster: RosterConfig = field(default_factory=RosterConfig)
    statuses: StatusConfig = field(default_factory=StatusConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    # Working directory (defaults to current directory)
    working_dir: Path = field(default_factory=Path.cwd)

    @property
    def bearer_base_url(self) -> str:
        """Base URL used with OAuth / magic-link bearer credentials"""
        return self.oauth.authority or self.backend.url

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create ClientConfig from dictionary (e.g., parsed YAML)"""
        backend_data = data.get("backend", {}) or {}
        backend = BackendConfig(
            url=backend_data.get("url", ""),
            api_version=ProtocolVersion.parse(backend_data.get("api_version", "4")),
            site_key=backend_data.get("site_key", "") or "",
            rest_path=backend_data.get("rest_path", DEFAULT_REST_PATH),
            ajax_path=backend_data.get("ajax_path", DEFAULT_AJAX_PATH),
            timeout=float(backend_data.get("timeout", 30.0)),
        )

        oauth_data = data.get("oauth", {}) or {}
        oauth = OAuthConfig(
            enabled=_as_bool(oauth_data.get("enabled", False)),
            authority=oauth_data.get("authority", "") or "",
            client_id=oauth_data.get("client_id", "") or "",
        )

        scanner_data = data.get("scanner", {}) or {}
        reset_ms = scanner_data.get("already_attended_reset_ms")
        scanner = ScannerConfig(
            debounce_ms=int(scanner_data.get("debounce_ms", 3000)),
            auto_validate=_as_bool(scanner_data.get("auto_validate", False)),
            already_attended_reset_ms=int(reset_ms) if reset_ms is not None else None,
        )

        roster_data = data.get("roster", {}) or {}
        roster = RosterConfig(
            poll_interval_seconds=float(roster_data.get("poll_interval_seconds", 30.0)),
            grace_period_minutes=int(roster_data.get("grace_period_minutes", 30)),
            show_past_events=_as_bool(roster_data.get("show_past_events", False)),
            sort_order=roster_data.get("sort_order", "name_asc"),
        )

        status_data = data.get("statuses", {}) or {}
        statuses = StatusConfig(
            attended=int(status_data.get("attended", 2)),
            registered=int(status_data.get("registered", 1)),
        )

        storage_data = data.get("storage", {}) or {}
        storage = StorageConfig(
            type=storage_data.get("type", "file"),
            path=storage_data.get("path", "~/.civiscan/storage.json"),
        )

        return cls(
            backend=backend,
            oauth=oauth,
            scanner=scanner,
            roster=roster,
            statuses=statuses,
            storage=storage,
            working_dir=Path(data.get("working_dir", ".")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "backend": {
                "url": self.backend.url,
                "api_version": self.backend.api_version.value,
                "site_key": self.backend.site_key,
                "rest_path": self.backend.rest_path,
                "ajax_path": self.backend.ajax_path,
                "timeout": self.backend.timeout,
            },
            "oauth": {
                "enabled": self.oauth.enabled,
                "authority": self.oauth.authority,
                "client_id": self.oauth.client_id,
            },
            "scanner": {
                "debounce_ms": self.scanner.debounce_ms,
                "auto_validate": self.scanner.auto_validate,
                "already_attended_reset_ms": self.scanner.already_attended_reset_ms,
            },
            "roster": {
                "poll_interval_seconds": self.roster.poll_interval_seconds,
                "grace_period_minutes": self.roster.grace_period_minutes,
                "show_past_events": self.roster.show_past_events,
                "sort_order": self.roster.sort_order,
            },
            "statuses": {
                "attended": self.statuses.attended,
                "registered": self.statuses.registered,
            },
            "storage": {
                "type": self.storage.type,
                "path": self.storage.path,
            },
            "working_dir": str(self.working_dir),
        }


def _as_bool(value: Any) -> bool:
    # Environment interpolation yields strings
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
