"""
Test configuration loading and persisted settings
"""

import pytest

from civiscan.config import ClientConfig, load_config, load_config_from_file
from civiscan.config.loader import interpolate_env_vars
from civiscan.core.credentials import ApiKey, CredentialKind, CredentialStore, MagicLinkToken
from civiscan.core.protocol import DEFAULT_REST_PATH, ProtocolVersion
from civiscan.core.settings import SettingsStore
from civiscan.core.storage import FileStorage, MemoryStorage, create_storage

YAML = """
backend:
  url: "${CIVI_URL}"
  api_version: "${CIVI_API_VERSION:-3}"
  site_key: "${CIVI_SITE_KEY:-}"

scanner:
  auto_validate: "true"
  already_attended_reset_ms: 1500

roster:
  grace_period_minutes: 45

statuses:
  attended: 12
  registered: 11

storage:
  type: memory
"""


class TestConfigLoader:
    """Tests for YAML loading with environment interpolation"""

    def test_load_from_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CIVI_URL", "https://crm.example.org")
        monkeypatch.delenv("CIVI_API_VERSION", raising=False)
        monkeypatch.delenv("CIVI_SITE_KEY", raising=False)
        path = tmp_path / "civiscan.yaml"
        path.write_text(YAML)

        config = load_config_from_file(path)

        assert config.backend.url == "https://crm.example.org"
        assert config.backend.api_version == ProtocolVersion.V3
        assert config.backend.site_key == ""
        assert config.backend.rest_path == DEFAULT_REST_PATH
        assert config.scanner.auto_validate is True
        assert config.scanner.debounce_ms == 3000
        assert config.scanner.already_attended_reset_ms == 1500
        assert config.roster.grace_period_minutes == 45
        assert config.statuses.attended == 12
        assert config.statuses.registered == 11
        assert config.working_dir == tmp_path.absolute()

    def test_required_variable_missing(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CIVI_URL", raising=False)
        path = tmp_path / "civiscan.yaml"
        path.write_text(YAML)

        with pytest.raises(KeyError):
            load_config_from_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_search_working_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CIVISCAN_CONFIG", raising=False)
        monkeypatch.setenv("CIVI_URL", "https://found.example.org")
        (tmp_path / "civiscan.yaml").write_text(YAML)

        config = load_config(working_dir=tmp_path)

        assert config.backend.url == "https://found.example.org"

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CIVISCAN_CONFIG", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.chdir(tmp_path)

        config = load_config()

        assert config.backend.api_version == ProtocolVersion.V4
        assert config.scanner.debounce_ms == 3000
        assert config.statuses.attended == 2
        assert config.roster.poll_interval_seconds == 30.0

    def test_env_var_points_at_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CIVI_URL", "https://env.example.org")
        path = tmp_path / "elsewhere.yaml"
        path.write_text(YAML)
        monkeypatch.setenv("CIVISCAN_CONFIG", str(path))

        assert load_config().backend.url == "https://env.example.org"

    def test_user_config_fallback(self, tmp_path, monkeypatch):
        """~/.civiscan/civiscan.yaml is used when nothing closer exists"""
        monkeypatch.delenv("CIVISCAN_CONFIG", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("CIVI_URL", "https://home.example.org")
        (tmp_path / ".civiscan").mkdir()
        (tmp_path / ".civiscan" / "civiscan.yaml").write_text(YAML)
        workdir = tmp_path / "work"
        workdir.mkdir()
        monkeypatch.chdir(workdir)

        assert load_config().backend.url == "https://home.example.org"

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "civiscan.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            load_config_from_file(path)

    def test_interpolate_nested(self, monkeypatch):
        monkeypatch.setenv("A", "x")
        monkeypatch.delenv("B", raising=False)
        assert interpolate_env_vars({"k": ["${A}", "${B:-y}", 3]}) == {"k": ["x", "y", 3]}

    def test_bearer_base_url(self):
        config = ClientConfig.from_dict({
            "backend": {"url": "https://crm.example.org"},
            "oauth": {"authority": "https://sso.example.org"},
        })
        assert config.bearer_base_url == "https://sso.example.org"
        assert ClientConfig.from_dict({"backend": {"url": "https://crm.example.org"}}).bearer_base_url == \
            "https://crm.example.org"

    def test_to_dict_roundtrip(self):
        config = ClientConfig.from_dict({"backend": {"url": "https://crm.example.org", "api_version": 3}})
        data = config.to_dict()

        assert data["backend"]["api_version"] == "3"
        assert ClientConfig.from_dict(data).backend == config.backend


class TestStorage:
    """Tests for the key-value storage backends"""

    def test_file_storage_creates_parent(self, tmp_path):
        storage = FileStorage(tmp_path / "nested" / "storage.json")
        storage.set("civi_url", "https://crm.example.org")

        assert "civi_url" in FileStorage(tmp_path / "nested" / "storage.json")

    def test_remove_missing_key(self):
        storage = MemoryStorage()
        storage.remove("absent")
        assert list(storage.keys()) == []

    def test_create_storage(self, tmp_path):
        assert isinstance(create_storage("memory"), MemoryStorage)
        assert isinstance(create_storage("file", str(tmp_path / "s.json")), FileStorage)
        with pytest.raises(ValueError):
            create_storage("redis")


class TestSettingsStore:
    """Tests for persisted settings"""

    def setup_method(self):
        self.storage = MemoryStorage()
        self.settings = SettingsStore(self.storage)
        self.credentials = CredentialStore(self.storage)

    def test_save_and_apply(self):
        self.settings.save(
            url="https://stored.example.org",
            api_version="3",
            site_key="S",
            rest_path="/libraries/civicrm/extern/rest.php",
            grace_period=10,
            show_past_events=True,
        )
        self.settings.set_auto_validate(True)
        base = ClientConfig.from_dict({"backend": {"url": "https://yaml.example.org"}})

        config = self.settings.apply_to(base)

        assert config.backend.url == "https://stored.example.org"
        assert config.backend.api_version == ProtocolVersion.V3
        assert config.backend.site_key == "S"
        assert config.backend.rest_path == "/libraries/civicrm/extern/rest.php"
        assert config.roster.grace_period_minutes == 10
        assert config.roster.show_past_events is True
        assert config.scanner.auto_validate is True
        # Original untouched
        assert base.backend.url == "https://yaml.example.org"

    def test_apply_without_settings(self):
        base = ClientConfig.from_dict({"backend": {"url": "https://yaml.example.org", "api_version": 4}})
        config = self.settings.apply_to(base)

        assert config.backend == base.backend
        assert config.roster == base.roster

    def test_lock(self):
        assert not self.settings.is_config_locked
        self.settings.lock_config()
        assert self.settings.is_config_locked

    def test_clear_settings(self):
        self.settings.save(url="https://crm.example.org")
        self.credentials.set(CredentialKind.API_KEY, ApiKey(key="K", base_url="https://crm.example.org"))
        self.credentials.set(CredentialKind.MAGIC_LINK, MagicLinkToken(token="t"))
        self.settings.lock_config()

        self.settings.clear_settings(self.credentials)

        assert self.credentials.get(CredentialKind.API_KEY) is None
        assert not self.settings.is_config_locked
        assert self.credentials.get(CredentialKind.MAGIC_LINK) is not None

    def test_logout(self):
        self.settings.save(url="https://crm.example.org", api_version="4")
        self.settings.set_auto_validate(True)
        self.settings.lock_config()
        self.credentials.set(CredentialKind.API_KEY, ApiKey(key="K", base_url="https://crm.example.org"))
        self.credentials.set(CredentialKind.MAGIC_LINK, MagicLinkToken(token="t"))
        self.storage.set("unrelated", 1)

        self.settings.logout(self.credentials)

        assert self.settings.as_dict() == {}
        for kind in CredentialKind:
            assert self.credentials.get(kind) is None
        assert self.storage.get("unrelated") == 1
