"""
Shared test helpers
"""

import json
import time
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from civiscan.config.schema import ClientConfig
from civiscan.core.client import ApiClient
from civiscan.core.credentials import CredentialStore
from civiscan.core.signals import SignalBus
from civiscan.core.storage import MemoryStorage

BASE_URL = "https://crm.example.org"


def make_token(exp_offset=3600, **claims):
    """Signed JWT; `exp_offset=None` leaves out `exp`"""
    payload = {"sub": "42", **claims}
    if exp_offset is not None:
        payload["exp"] = int(time.time()) + exp_offset
    return jwt.encode(payload, "client-side-decoding-never-checks-this-signing-key", algorithm="HS256")


def make_config(api_version="4", **backend):
    return ClientConfig.from_dict({
        "backend": {"url": BASE_URL, "api_version": api_version, "site_key": "SITE", **backend},
        "storage": {"type": "memory"},
    })


def make_client(handler, storage=None, api_version="4", unauthorized=None):
    """ApiClient whose HTTP traffic goes to `handler(request) -> httpx.Response`"""
    storage = storage if storage is not None else MemoryStorage()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ApiClient(
        make_config(api_version),
        CredentialStore(storage),
        unauthorized=unauthorized or SignalBus("unauthorized"),
        http_client=http,
    )


def v4_params(request: httpx.Request) -> dict:
    """Decode the JSON `params` field of an APIv4 form body"""
    form = parse_qs(request.content.decode())
    return json.loads(form["params"][0])


@pytest.fixture
def api_key_storage():
    return MemoryStorage({"civi_url": BASE_URL, "civi_api_key": "KEY123"})
