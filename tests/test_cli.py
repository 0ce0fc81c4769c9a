import json
import logging

import aiohttp
import pytest

import engine.client_factory as client_factory
from cli import main as cli
from fakes import FakeSession, fail, ok
from rsa_client.async_rest import AsyncRestClient
from utils.credentials import TokenStore


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fake_backend(monkeypatch, session: FakeSession) -> FakeSession:
    def build_api_client(config, *, token_store=None, on_unauthorized=None):
        return AsyncRestClient(
            base_url="http://dex.test",
            admin_api_url="http://admin.test",
            token_store=TokenStore(persist=False),
            session=session,
            on_unauthorized=on_unauthorized,
        )

    monkeypatch.setattr(client_factory, "build_api_client", build_api_client)
    return session


def _write_config(tmp_path, text: str, name: str = "config.yml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def _output(capsys):
    return json.loads(capsys.readouterr().out)


def test_missing_config_file_exits_with_2(tmp_path):
    assert cli.main(["health", "--config", str(tmp_path / "missing.yml")]) == 2


def test_invalid_config_exits_with_2(tmp_path, fake_backend):
    path = _write_config(tmp_path, "base_url: ftp://dex.example.com\n")

    assert cli.main(["health", "--config", path]) == 2
    assert fake_backend.requests == []


def test_unsupported_config_format_exits_with_2(tmp_path):
    path = _write_config(tmp_path, "base_url=http://x", name="config.ini")

    assert cli.main(["sync", "--config", path]) == 2


def test_unknown_module_exits_with_2(fake_backend):
    assert cli.main(["sync-module", "orders"]) == 2


def test_sync_asset_prints_result(fake_backend, capsys):
    fake_backend.add("POST", "/api/admin/assets/7/sync", ok())

    assert cli.main(["sync-asset", "7"]) == 0

    assert _output(capsys) == {
        "success": True,
        "errors": [],
        "warnings": [],
        "synced_count": 1,
        "total_count": 1,
    }


def test_full_sync_uses_configured_modules(tmp_path, fake_backend, capsys):
    path = _write_config(
        tmp_path,
        '{"full_sync_modules": ["assets", "contracts"]}',
        name="config.json",
    )
    fake_backend.add("POST", "/api/admin/assets/sync-all", ok({"syncedCount": 2}))
    fake_backend.add("GET", "/api/admin/assets", ok([]))
    fake_backend.add("POST", "/api/admin/sync-contracts", fail("contract sync down"))

    assert cli.main(["sync", "--config", path]) == 1

    payload = _output(capsys)
    assert payload["success"] is False
    assert payload["results"]["assets"]["synced_count"] == 2
    assert payload["results"]["contracts"]["errors"] == ["contract sync down"]


def test_health_reports_error_when_backend_unreachable(fake_backend, capsys):
    fake_backend.add("GET", "/health", aiohttp.ClientConnectionError("refused"))

    assert cli.main(["health"]) == 1

    payload = _output(capsys)
    assert payload["assets"] == "error"
    assert payload["tradingPairs"] == "error"
    assert payload["lastSync"] is None


def test_load_reports_fallback(fake_backend, capsys):
    fake_backend.add("GET", "/api/admin/wallets", fail("offline"))

    assert cli.main(["load", "--module", "wallets"]) == 0

    payload = _output(capsys)
    assert payload["wallets"]["usedFallback"] is True
    assert payload["wallets"]["count"] == 1


def test_login_reads_password_from_env(monkeypatch, fake_backend):
    monkeypatch.setenv("ADMIN_PASSWORD", "s3cret")
    fake_backend.add("POST", "/auth/login", ok({"token": "abc"}))

    assert (
        cli.main(["login", "--username", "admin", "--password-env", "ADMIN_PASSWORD"])
        == 0
    )
    assert fake_backend.requests[-1]["json"]["password"] == "s3cret"


def test_login_failure_exits_with_1(monkeypatch, fake_backend):
    monkeypatch.setenv("ADMIN_PASSWORD", "wrong")
    fake_backend.add("POST", "/auth/login", fail("Invalid credentials"))

    assert (
        cli.main(["login", "--username", "admin", "--password-env", "ADMIN_PASSWORD"])
        == 1
    )


def test_login_with_unset_password_env_exits_with_2(monkeypatch, fake_backend):
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)

    assert (
        cli.main(["login", "--username", "admin", "--password-env", "ADMIN_PASSWORD"])
        == 2
    )


def test_load_config_reads_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('base_url = "http://dex.test"\nrest_retries = 2\n', encoding="utf-8")

    assert cli.load_config(path) == {"base_url": "http://dex.test", "rest_retries": 2}


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        cli.load_config(path)
