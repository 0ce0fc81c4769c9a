"""Bearer token persistence for the admin API client."""

from __future__ import annotations

import logging
import os
import re
from typing import Mapping

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

DEFAULT_SERVICE_NAME = "rsa-dex-admin"
DEFAULT_TOKEN_ENV = "RSA_DEX_ADMIN_TOKEN"
DEFAULT_TOKEN_USERNAME = "admin_token"
_ENV_PATTERN = re.compile(r"^\$\{([A-Z0-9_]+)\}$")

LOGGER = logging.getLogger("rsa_dex_sync.credentials")


def load_api_token(
    service_name: str,
    config: Mapping[str, object] | None = None,
    *,
    token_env: str = DEFAULT_TOKEN_ENV,
    token_username: str = DEFAULT_TOKEN_USERNAME,
) -> str | None:
    """Load the admin token from config, env vars, or keyring in order."""
    token = _resolve_value(config, "api_token")
    if not token:
        token = _clean_value(os.getenv(token_env))
    if not token:
        token = _get_keyring_value(service_name, token_username)
    return token


def store_api_token(
    service_name: str,
    token: str,
    *,
    token_username: str = DEFAULT_TOKEN_USERNAME,
) -> None:
    """Store the admin token in the OS keychain via keyring."""
    token_value = _clean_value(token)
    if not token_value:
        raise ValueError("token must be a non-empty string.")
    try:
        keyring.set_password(service_name, token_username, token_value)
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to store the admin token in the OS keychain. "
            "Ensure a keyring backend is available."
        ) from exc


def clear_api_token(
    service_name: str,
    *,
    token_username: str = DEFAULT_TOKEN_USERNAME,
) -> None:
    """Remove the stored token; a missing entry is not an error."""
    try:
        keyring.delete_password(service_name, token_username)
    except PasswordDeleteError:
        return
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to clear the admin token from the OS keychain."
        ) from exc


class TokenStore:
    """Cached view over the persisted admin token for one service scope."""

    def __init__(
        self,
        service_name: str = DEFAULT_SERVICE_NAME,
        config: Mapping[str, object] | None = None,
        *,
        persist: bool = True,
    ) -> None:
        self.service_name = service_name
        self._config = config
        self._persist = persist
        self._token: str | None = None
        self._loaded = False

    def get(self) -> str | None:
        if not self._loaded:
            self._loaded = True
            if self._persist:
                try:
                    self._token = load_api_token(self.service_name, self._config)
                except RuntimeError as exc:
                    LOGGER.warning("Continuing without a stored token: %s", exc)
        return self._token

    def set(self, token: str) -> None:
        self._token = _clean_value(token)
        self._loaded = True
        if not self._persist or not self._token:
            return
        try:
            store_api_token(self.service_name, self._token)
        except RuntimeError as exc:
            LOGGER.warning("Token kept in memory only: %s", exc)

    def clear(self) -> None:
        self._token = None
        self._loaded = True
        self._config = None
        if not self._persist:
            return
        try:
            clear_api_token(self.service_name)
        except RuntimeError as exc:
            LOGGER.warning("Token cleared in memory only: %s", exc)


def _resolve_value(config: Mapping[str, object] | None, key: str) -> str | None:
    if not config or key not in config:
        return None
    raw = config.get(key)
    if not isinstance(raw, str):
        return _clean_value(str(raw)) if raw is not None else None
    raw = raw.strip()
    if not raw:
        return None
    match = _ENV_PATTERN.match(raw)
    if match:
        return _clean_value(os.getenv(match.group(1)))
    return _clean_value(raw)


def _clean_value(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def _get_keyring_value(service_name: str, username: str) -> str | None:
    try:
        return _clean_value(keyring.get_password(service_name, username))
    except KeyringError as exc:
        raise RuntimeError(
            "Failed to access the OS keychain. "
            "Ensure a keyring backend is available."
        ) from exc
