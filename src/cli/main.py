"""CLI entry point for the RSA DEX sync tooling."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Awaitable, Callable

import yaml

from engine.client_factory import SyncRuntime, build_runtime
from rsa_client.models import SyncResult
from rsa_client.schemas import Module, SyncState
from utils.config_validator import ConfigValidationError, validate_config
from utils.logging_config import LogContext, setup_logging

LOGGER = logging.getLogger("rsa_dex_sync.cli")

SUPPORTED_FORMATS = (".json", ".toml", ".yaml", ".yml")
DEFAULT_STATE_FILE = "session.json"

Action = Callable[[SyncRuntime, argparse.Namespace], Awaitable[int]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RSA DEX admin sync CLI")
    parser.add_argument(
        "--version", action="version", version="rsa-dex-sync 0.1.0"
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to JSON/TOML/YAML config file.")
    common.add_argument(
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Overrides the config.",
    )
    common.add_argument(
        "--structured-logs",
        action="store_true",
        help="Emit JSON log lines.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    health = subparsers.add_parser(
        "health", parents=[common], help="Check backend health and module sync state."
    )
    health.set_defaults(action=run_health)

    sync = subparsers.add_parser(
        "sync", parents=[common], help="Run a full synchronization."
    )
    sync.set_defaults(action=run_full_sync)

    sync_asset = subparsers.add_parser(
        "sync-asset", parents=[common], help="Sync a single asset to the DEX."
    )
    sync_asset.add_argument("asset_id", help="Asset id to sync.")
    sync_asset.set_defaults(action=run_sync_asset)

    sync_module = subparsers.add_parser(
        "sync-module", parents=[common], help="Sync one module."
    )
    sync_module.add_argument(
        "module", help="One of: " + ", ".join(module.value for module in Module)
    )
    sync_module.set_defaults(action=run_sync_module)

    load = subparsers.add_parser(
        "load", parents=[common], help="Load collections and report their contents."
    )
    load.add_argument(
        "--module",
        action="append",
        help="Module to load (repeatable). Defaults to every module.",
    )
    load.set_defaults(action=run_load)

    login = subparsers.add_parser(
        "login", parents=[common], help="Log in and store the admin token."
    )
    login.add_argument("--username", required=True)
    login.add_argument(
        "--password-env",
        help="Read the password from this environment variable instead of a prompt.",
    )
    login.add_argument("--two-factor-code", help="Optional 2FA code.")
    login.set_defaults(action=run_login)

    logout = subparsers.add_parser(
        "logout", parents=[common], help="Log out and forget the stored token."
    )
    logout.set_defaults(action=run_logout)

    watch = subparsers.add_parser(
        "watch", parents=[common], help="Run the background pollers for a while."
    )
    watch.add_argument(
        "--duration",
        type=float,
        default=60.0,
        help="Seconds to keep polling (default: 60).",
    )
    watch.set_defaults(action=run_watch)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "action"):
        return run_command(args, args.action)
    parser.print_help()
    return 1


def run_command(args: argparse.Namespace, action: Action) -> int:
    configure_logging(args.log_level or "INFO", args.structured_logs)
    try:
        config = load_config(Path(args.config).expanduser()) if args.config else {}
        try:
            validate_config(config)
        except ConfigValidationError as exc:
            LOGGER.error("Configuration validation failed: %s", exc)
            return 2
        if not args.log_level and (
            "log_level" in config or config.get("structured_logs")
        ):
            configure_logging(
                config.get("log_level", "INFO"),
                args.structured_logs or bool(config.get("structured_logs")),
            )
        with LogContext(command=args.command):
            return asyncio.run(_run_with_runtime(config, args, action))
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error running %s: %s", args.command, exc)
        return 3


async def _run_with_runtime(
    config: dict[str, Any], args: argparse.Namespace, action: Action
) -> int:
    runtime = build_runtime(config)
    try:
        return await action(runtime, args)
    finally:
        await runtime.close()


async def run_health(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    status = await runtime.coordinator.check_sync_health()
    emit(status.as_dict())
    stats = runtime.coordinator.get_sync_stats()
    LOGGER.info("%s/%s modules synced", stats.synced, stats.total)
    return 1 if any(status[module] is SyncState.ERROR for module in status) else 0


async def run_full_sync(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    report = await runtime.coordinator.force_full_sync()
    emit(
        {
            "success": report.success,
            "results": {
                name: result_payload(result) for name, result in report.results.items()
            },
        }
    )
    return 0 if report.success else 1


async def run_sync_asset(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    result = await runtime.coordinator.sync_asset(args.asset_id)
    emit(result_payload(result))
    return 0 if result.success else 1


async def run_sync_module(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    module = Module.parse(args.module)
    result = await runtime.coordinator.sync_module(module)
    emit(result_payload(result))
    return 0 if result.success else 1


async def run_load(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    if args.module:
        modules = [Module.parse(name) for name in args.module]
        outcomes = await asyncio.gather(
            *(runtime.reconciler.load(module) for module in modules)
        )
    else:
        outcomes = list((await runtime.reconciler.load_all()).values())
    emit(
        {
            outcome.module.value: {
                "count": len(outcome.items),
                "usedFallback": outcome.used_fallback,
                "error": outcome.error,
                "warnings": list(outcome.warnings),
            }
            for outcome in outcomes
        }
    )
    return 0


async def run_login(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    password = read_password(args.password_env)
    response = await runtime.client.login(
        args.username, password, args.two_factor_code
    )
    if not response.success or not runtime.client.get_token():
        LOGGER.error("Login failed: %s", response.error or "no token returned")
        return 1
    LOGGER.info("Logged in as %s", args.username)
    return 0


async def run_logout(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    response = await runtime.client.logout()
    if not response.success:
        LOGGER.warning("Server logout failed (%s); local token cleared.", response.error)
    LOGGER.info("Logged out")
    return 0


async def run_watch(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    if args.duration <= 0:
        raise ValueError("--duration must be positive.")
    state_path = resolve_state_path(runtime.config)
    runtime.trading.restore(state_path)
    runtime.pollers.start_all()
    LOGGER.info(
        "Polling %s for %ss", ", ".join(runtime.pollers.pollers), args.duration
    )
    try:
        await asyncio.sleep(args.duration)
    finally:
        await runtime.pollers.stop_all()
        runtime.trading.persist(state_path)
    emit(runtime.coordinator.get_sync_status().as_dict())
    return 0


def result_payload(result: SyncResult) -> dict[str, Any]:
    return result.model_dump(mode="json")


def emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def read_password(env_name: str | None) -> str:
    if env_name:
        password = os.getenv(env_name)
        if not password:
            raise ValueError(f"Environment variable {env_name} is not set.")
        return password
    return getpass.getpass("Password: ")


def resolve_state_path(config: dict[str, Any]) -> Path:
    return Path(config.get("state_path", DEFAULT_STATE_FILE)).expanduser()


def configure_logging(level: str, structured: bool = False) -> None:
    """Configure logging with sanitization and proper formatting."""
    setup_logging(level=level, sanitize=True, structured=structured)


def load_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. Ensure the path is correct and readable."
        )
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        supported = ", ".join(SUPPORTED_FORMATS)
        raise ValueError(
            f"Unsupported config format '{suffix}'. Supported formats: {supported}."
        )
    text = config_path.read_text(encoding="utf-8")
    try:
        if suffix == ".json":
            data = json.loads(text)
        elif suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config file {config_path}: {exc}. Validate the file format."
        ) from exc
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Failed to parse config file {config_path}: {exc}.") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a JSON/TOML/YAML object mapping."
        )
    return data


if __name__ == "__main__":
    raise SystemExit(main())
