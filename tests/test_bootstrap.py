"""
Test config-link and magic-link bootstrap
"""

import base64
import json

import httpx
import pytest

from civiscan.core.client import TokenValidation
from civiscan.core.credentials import ApiKey, CredentialKind
from civiscan.core.errors import TokenInvalid
from civiscan.core.protocol import ProtocolVersion
from civiscan.core.settings import SettingsStore
from civiscan.core.storage import MemoryStorage
from civiscan.services.bootstrap import (
    bootstrap_from_url,
    decode_config_link,
    encode_config_link,
    strip_params,
)

from conftest import BASE_URL, make_client, make_token

LINK_SETTINGS = {
    "url": "https://crm.example.org",
    "apiKey": "LINKKEY",
    "siteKey": "LINKSITE",
    "restPath": "/sites/all/modules/civicrm/extern/rest.php",
    "apiVersion": "3",
}


class TestConfigLink:
    """Tests for ?config= payloads"""

    def test_decode(self):
        assert decode_config_link(encode_config_link(LINK_SETTINGS)) == LINK_SETTINGS

    def test_decode_urlsafe_without_padding(self):
        raw = base64.urlsafe_b64encode(json.dumps({"url": "https://a.b", "apiKey": "k?>"}).encode())
        payload = raw.decode().rstrip("=")

        assert decode_config_link(payload)["apiKey"] == "k?>"

    @pytest.mark.parametrize("payload", [
        "%%%not-base64%%%",
        base64.b64encode(b"not json").decode(),
        encode_config_link({"url": "https://a.b"}),
        encode_config_link(["url", "apiKey"]),
    ])
    def test_decode_invalid(self, payload):
        with pytest.raises(TokenInvalid):
            decode_config_link(payload)

    def test_strip_params(self):
        url = "https://app.example.org/scan/?config=abc&lang=fr&token=t#frag"
        assert strip_params(url) == "https://app.example.org/scan/?lang=fr#frag"


class TestBootstrapFromUrl:
    """Tests for bootstrap_from_url"""

    def setup_method(self):
        self.storage = MemoryStorage()
        self.settings = SettingsStore(self.storage)
        self.requests = []
        self.status = 200

    def handler(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, json={"values": [{"id": 1}]})

    def client(self):
        client = make_client(self.handler, storage=self.storage)
        return client

    @pytest.mark.asyncio
    async def test_config_link(self):
        url = f"https://app.example.org/scan/?config={encode_config_link(LINK_SETTINGS)}"
        client = self.client()

        result = await bootstrap_from_url(url, client, self.settings, client.credentials)

        assert result.kind == "config"
        assert result.ok
        assert result.clean_url == "https://app.example.org/scan/"
        assert self.settings.url == "https://crm.example.org"
        assert self.settings.api_version == ProtocolVersion.V3
        assert self.settings.is_config_locked
        assert client.credentials.get(CredentialKind.API_KEY) == ApiKey(
            key="LINKKEY", base_url="https://crm.example.org"
        )
        assert self.requests == []

    @pytest.mark.asyncio
    async def test_config_link_defaults_to_v3(self):
        payload = encode_config_link({"url": "https://crm.example.org", "apiKey": "K"})
        client = self.client()

        await bootstrap_from_url(f"https://app/?config={payload}", client, self.settings, client.credentials)

        assert self.settings.api_version == ProtocolVersion.V3

    @pytest.mark.asyncio
    async def test_bad_config_link_raises(self):
        client = self.client()

        with pytest.raises(TokenInvalid):
            await bootstrap_from_url("https://app/?config=xyz!", client, self.settings, client.credentials)

        assert not self.settings.is_config_locked

    @pytest.mark.asyncio
    async def test_magic_link_success(self):
        token = make_token()
        url = f"https://app.example.org/scan/?token={token}&target=%2Fevents%2F7"
        client = self.client()

        result = await bootstrap_from_url(url, client, self.settings, client.credentials)

        assert result.kind == "magic_link"
        assert result.status == TokenValidation.SUCCESS.value
        assert result.ok
        assert result.target == "/events/7"
        assert result.clean_url == "https://app.example.org/scan/"
        assert client.credentials.get(CredentialKind.MAGIC_LINK).token == token
        assert self.requests[0].url.host == "crm.example.org"

    @pytest.mark.asyncio
    async def test_magic_link_rejected(self):
        """Rejected token is not stored but still stripped from the URL"""
        self.status = 401
        client = self.client()

        result = await bootstrap_from_url(
            f"https://app.example.org/?token={make_token()}&target=x", client, self.settings, client.credentials
        )

        assert result.status == TokenValidation.UNAUTHORIZED.value
        assert not result.ok
        assert result.target is None
        assert "token" not in result.clean_url
        assert client.credentials.get(CredentialKind.MAGIC_LINK) is None

    @pytest.mark.asyncio
    async def test_magic_link_permission_denied(self):
        self.status = 403
        client = self.client()

        result = await bootstrap_from_url(
            f"{BASE_URL}/?token={make_token()}", client, self.settings, client.credentials
        )

        assert result.status == TokenValidation.PERMISSION_DENIED.value
        assert client.credentials.get(CredentialKind.MAGIC_LINK) is None

    @pytest.mark.asyncio
    async def test_plain_url(self):
        client = self.client()
        url = "https://app.example.org/scan/?lang=fr"

        result = await bootstrap_from_url(url, client, self.settings, client.credentials)

        assert result.kind == "none"
        assert result.clean_url == url
        assert self.requests == []
