from __future__ import annotations

import pytest

from fakes import FakeSession
from rsa_client.async_rest import AsyncRestClient
from utils.credentials import TokenStore


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in ("RSA_DEX_URL", "RSA_ADMIN_API_URL", "RSA_DEX_ADMIN_TOKEN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(session: FakeSession) -> AsyncRestClient:
    return AsyncRestClient(
        base_url="http://dex.test",
        admin_api_url="http://admin.test",
        token_store=TokenStore(persist=False),
        session=session,
    )
