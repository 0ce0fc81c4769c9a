"""Configuration validation for the RSA DEX sync tooling."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from rsa_client.schemas import Module

LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
KNOWN_POLLERS = {"transactions", "prices", "dashboard"}


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""


def validate_positive_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a positive decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    try:
        decimal_value = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ConfigValidationError(
            f"{field} must be a valid number, got: {value}"
        ) from exc

    if not decimal_value.is_finite() or decimal_value <= 0:
        raise ConfigValidationError(f"{field} must be positive, got: {value}")


def validate_integer(
    config: dict[str, Any], field: str, *, required: bool = True, minimum: int = 1
) -> None:
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{field} must be an integer, got: {type(value).__name__}"
        )
    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}, got: {value}")


def validate_non_empty_string(
    config: dict[str, Any], field: str, *, required: bool = False
) -> None:
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    value = config[field]
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")


def validate_bool(config: dict[str, Any], field: str) -> None:
    if field in config and not isinstance(config[field], bool):
        raise ConfigValidationError(f"{field} must be a boolean if provided.")


def validate_url(config: dict[str, Any], field: str = "base_url") -> None:
    """Validate that a URL field is properly formatted."""
    if field not in config:
        return  # Defaults come from the environment or localhost.

    validate_non_empty_string(config, field)
    url = config[field]
    if not re.match(r"^https?://", url, re.IGNORECASE):
        raise ConfigValidationError(
            f"{field} must start with http:// or https://, got: {url}"
        )


def validate_log_level(config: dict[str, Any]) -> None:
    if "log_level" not in config:
        return
    level = config["log_level"]
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        choices = ", ".join(sorted(LOG_LEVELS))
        raise ConfigValidationError(f"log_level must be one of [{choices}], got: {level}")


def validate_full_sync_modules(config: dict[str, Any]) -> None:
    if "full_sync_modules" not in config:
        return
    modules = config["full_sync_modules"]
    if not isinstance(modules, list) or not modules:
        raise ConfigValidationError("full_sync_modules must be a non-empty list")
    for name in modules:
        if not isinstance(name, str):
            raise ConfigValidationError(
                f"full_sync_modules entries must be strings, got: {name!r}"
            )
        try:
            Module.parse(name)
        except ValueError as exc:
            raise ConfigValidationError(str(exc)) from exc


def validate_poll_intervals(config: dict[str, Any]) -> None:
    if "poll_intervals" not in config:
        return
    intervals = config["poll_intervals"]
    if not isinstance(intervals, dict):
        raise ConfigValidationError("poll_intervals must be a mapping")
    for name in intervals:
        if name not in KNOWN_POLLERS:
            choices = ", ".join(sorted(KNOWN_POLLERS))
            raise ConfigValidationError(
                f"poll_intervals keys must be one of [{choices}], got: {name}"
            )
        validate_positive_decimal(intervals, name)


def validate_config(config: dict[str, Any]) -> None:
    """Validate a sync tool configuration; every key is optional."""
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a mapping")

    validate_url(config, "base_url")
    validate_url(config, "admin_api_url")
    validate_positive_decimal(config, "rest_timeout_sec", required=False)
    validate_integer(config, "rest_retries", required=False, minimum=0)
    if "rest_backoff_factor" in config:
        validate_positive_decimal(config, "rest_backoff_factor")
    validate_non_empty_string(config, "token_service")
    validate_non_empty_string(config, "state_path")
    validate_full_sync_modules(config)
    validate_poll_intervals(config)
    validate_log_level(config)
    validate_bool(config, "structured_logs")
