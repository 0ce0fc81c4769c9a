"""Async REST client for the RSA DEX admin and trading backends."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import ssl
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Mapping
from urllib.parse import urlencode

import aiohttp

from rsa_client import constants
from rsa_client.envelope import (
    ApiResponse,
    decode_envelope,
    extract_error_message,
    failure,
)
from rsa_client.schemas import BalanceOp, Module, TransactionAction
from utils.credentials import TokenStore

LOGGER = logging.getLogger("rsa_dex_sync.rest")


@dataclass
class AsyncRestRequest:
    method: str
    path: str
    params: Mapping[str, Any] | None = None
    body: Mapping[str, Any] | None = None
    base_url: str | None = None


class AsyncRestError(Exception):
    """Base exception for async REST client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AsyncRateLimitError(AsyncRestError):
    """Raised when the API indicates that the rate limit has been exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class AsyncTransientApiError(AsyncRestError):
    """Raised for transient REST errors that may succeed on retry."""


class UnauthorizedError(AsyncRestError):
    """Raised when the backend rejects the bearer token."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=401)


class AsyncRestClient:
    """Async REST client returning uniform envelopes instead of raising.

    Transport failures, HTTP error codes and malformed bodies all come back
    as ``ApiResponse(success=False, error=...)``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token_store: TokenStore | None = None,
        *,
        admin_api_url: str | None = None,
        timeout: float = constants.DEFAULT_TIMEOUT_SEC,
        max_retries: int = 0,
        backoff_factor: float = 0.5,
        session: aiohttp.ClientSession | None = None,
        on_unauthorized: Callable[[], None] | None = None,
        verify_ssl: bool = True,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.base_url = (base_url or constants.default_dex_url()).rstrip("/")
        self.admin_api_url = (
            admin_api_url or constants.default_admin_api_url()
        ).rstrip("/")
        self.token_store = token_store or TokenStore(persist=False)
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.on_unauthorized = on_unauthorized
        self._ssl_context = ssl_context
        if ssl_context is None and verify_ssl:
            self._ssl_context = ssl.create_default_context()
        elif ssl_context is None and not verify_ssl:
            self._ssl_context = ssl._create_unverified_context()
            logging.warning(
                "SSL certificate verification is DISABLED. "
                "This should NEVER be used in production environments."
            )
        self._session = session
        self._owns_session = session is None
        self._redirect_pending = False

    async def __aenter__(self) -> "AsyncRestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Token lifecycle

    def set_token(self, token: str) -> None:
        self.token_store.set(token)
        self._redirect_pending = False

    def get_token(self) -> str | None:
        return self.token_store.get()

    def clear_token(self) -> None:
        self.token_store.clear()

    # Generic verbs

    async def get(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(
        self, path: str, body: Mapping[str, Any] | None = None
    ) -> ApiResponse:
        return await self.request("POST", path, body=body)

    async def put(
        self, path: str, body: Mapping[str, Any] | None = None
    ) -> ApiResponse:
        return await self.request("PUT", path, body=body)

    async def delete(self, path: str) -> ApiResponse:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        base_url: str | None = None,
    ) -> ApiResponse:
        request = AsyncRestRequest(
            method=method, path=path, params=params, body=body, base_url=base_url
        )
        try:
            status, payload = await self.send(request)
        except UnauthorizedError as exc:
            self._handle_unauthorized()
            return failure(str(exc), exc.status_code)
        except AsyncRestError as exc:
            LOGGER.warning(
                "%s %s failed: %s", method.upper(), path, exc, extra={"path": path}
            )
            return failure(str(exc), exc.status_code)
        return decode_envelope(payload, status)

    def build_url(self, path: str, base_url: str | None = None) -> str:
        base = (base_url or self.base_url).rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    async def send(self, request: AsyncRestRequest) -> tuple[int, Any]:
        attempts = 0
        while True:
            try:
                return await self._send_once(request)
            except AsyncRateLimitError as exc:
                attempts += 1
                if attempts > self.max_retries:
                    raise
                delay = exc.retry_after or self._compute_backoff(attempts)
                await asyncio.sleep(delay)
            except AsyncTransientApiError:
                attempts += 1
                if attempts > self.max_retries:
                    raise
                await asyncio.sleep(self._compute_backoff(attempts))

    async def _send_once(self, request: AsyncRestRequest) -> tuple[int, Any]:
        method = request.method.upper()
        url = self.build_url(request.path, request.base_url)
        params = {
            key: value
            for key, value in (request.params or {}).items()
            if value is not None
        }
        headers = {"Accept": "application/json"}

        if params:
            url = f"{url}?{urlencode(params)}"

        data_bytes = None
        if method != "GET" and request.body is not None:
            data_bytes = json.dumps(
                dict(request.body), default=_json_default, separators=(",", ":")
            ).encode("utf8")
            headers["Content-Type"] = "application/json"

        token = self.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                data=data_bytes,
                timeout=timeout,
            ) as response:
                status = response.status
                try:
                    text = await response.text()
                except (UnicodeDecodeError, LookupError) as exc:
                    raise AsyncRestError(
                        f"Invalid response encoding from {request.path}",
                        status_code=status,
                    ) from exc
                if status == 429:
                    retry_after = self._parse_retry_after(
                        response.headers.get("Retry-After")
                    )
                    raise AsyncRateLimitError(
                        "Rate limit exceeded", retry_after=retry_after
                    )
                if status == 401:
                    raise UnauthorizedError(
                        self._build_http_error_message(status, text)
                    )
                if status in {502, 503, 504}:
                    raise AsyncTransientApiError(
                        self._build_http_error_message(status, text),
                        status_code=status,
                    )
                if status >= 400:
                    raise AsyncRestError(
                        self._build_http_error_message(status, text),
                        status_code=status,
                    )
        except aiohttp.ClientError as exc:
            raise AsyncTransientApiError(
                f"Network error while contacting API: {exc}"
            ) from exc
        except asyncio.TimeoutError as exc:
            raise AsyncTransientApiError(
                f"Request timed out after {self.timeout:g}s"
            ) from exc

        if not text:
            return status, None
        try:
            return status, json.loads(text)
        except json.JSONDecodeError as exc:
            raise AsyncRestError(
                f"Invalid JSON in response from {request.path}", status_code=status
            ) from exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            connector = aiohttp.TCPConnector(ssl=self._ssl_context)
            self._session = aiohttp.ClientSession(timeout=timeout, connector=connector)
            self._owns_session = True
        return self._session

    def _handle_unauthorized(self) -> None:
        self.clear_token()
        if self._redirect_pending:
            return
        self._redirect_pending = True
        LOGGER.warning("Backend rejected the admin token; login required.")
        if self.on_unauthorized is not None:
            self.on_unauthorized()

    def _compute_backoff(self, attempt: int) -> float:
        base = self.backoff_factor * (2 ** (attempt - 1))
        return base + random.uniform(0, base)

    def _parse_retry_after(self, header_value: str | None) -> float | None:
        if header_value is None:
            return None
        try:
            return float(header_value)
        except ValueError:
            return None

    def _build_http_error_message(self, status_code: int, payload: str) -> str:
        message = None
        if payload:
            try:
                message = extract_error_message(json.loads(payload))
            except json.JSONDecodeError:
                message = None
        return message or f"HTTP error {status_code}"

    # Auth

    async def login(
        self, username: str, password: str, two_factor_code: str | None = None
    ) -> ApiResponse:
        response = await self.post(
            constants.LOGIN,
            {
                "username": username,
                "password": password,
                "twoFactorCode": two_factor_code,
            },
        )
        token = response.field("token")
        if response.success and isinstance(token, str) and token:
            self.set_token(token)
        return response

    async def logout(self) -> ApiResponse:
        response = await self.post(constants.LOGOUT)
        self.clear_token()
        return response

    async def verify_token(self) -> ApiResponse:
        return await self.get(constants.VERIFY)

    # Sync endpoints

    async def health_check(self) -> ApiResponse:
        return await self.get(constants.HEALTH)

    async def get_sync_status(self, module: Module) -> ApiResponse:
        return await self.get(f"{constants.SYNC_STATUS}/{module.slug}")

    async def sync_all_assets(self) -> ApiResponse:
        return await self.post(constants.ASSETS_SYNC_ALL)

    async def sync_asset(self, asset_id: str) -> ApiResponse:
        return await self.post(f"{constants.ASSETS}/{asset_id}/sync")

    async def sync_module(self, module: Module) -> ApiResponse:
        return await self.post(module.sync_path)

    async def list_entities(
        self,
        module: Module,
        page: int = 1,
        limit: int = 100,
        status: str | None = None,
    ) -> ApiResponse:
        path = module.list_path
        if path is None:
            return failure(f"No list endpoint for {module.value}")
        return await self.get(path, {"page": page, "limit": limit, "status": status})

    # Entity mutations

    async def fund_wallet(
        self, wallet_id: str, amount: Decimal, asset: str
    ) -> ApiResponse:
        return await self.post(
            f"{constants.WALLETS}/{wallet_id}/fund", {"amount": amount, "asset": asset}
        )

    async def update_wallet_status(self, wallet_id: str, status: str) -> ApiResponse:
        return await self.put(
            f"{constants.WALLETS}/{wallet_id}/status", {"status": status}
        )

    async def transaction_action(
        self,
        transaction_id: str,
        action: TransactionAction,
        reason: str | None = None,
    ) -> ApiResponse:
        if action is TransactionAction.RECALL:
            return await self.post(
                constants.TX_RECALL,
                {"transactionId": transaction_id, "reason": reason or ""},
            )
        path = f"{constants.TRANSACTIONS}/{transaction_id}/{action.value}"
        if action is TransactionAction.REJECT:
            return await self.post(path, {"reason": reason})
        return await self.post(path)

    async def adjust_contract_balance(
        self, contract_id: str, op: BalanceOp, amount: Decimal, asset: str
    ) -> ApiResponse:
        if op is BalanceOp.SET:
            raise ValueError("Contract balances can only be added to or reduced.")
        return await self.post(
            f"{constants.CONTRACTS}/{contract_id}/balance/{op.value}",
            {"amount": amount, "asset": asset},
        )

    async def transfer_from_contract(
        self, contract_id: str, to_address: str, amount: Decimal, asset: str
    ) -> ApiResponse:
        return await self.post(
            f"{constants.CONTRACTS}/{contract_id}/transfer",
            {"toAddress": to_address, "amount": amount, "asset": asset},
        )

    # Trader-side market data

    async def get_admin_assets(self) -> ApiResponse:
        return await self.request(
            "GET", constants.DEV_ADMIN_ASSETS, base_url=self.admin_api_url
        )

    async def get_prices(self) -> ApiResponse:
        return await self.get(constants.PRICES)

    async def get_orderbook(self, pair: str) -> ApiResponse:
        base, quote = _split_pair(pair)
        return await self.get(constants.MARKET_ORDERBOOK.format(base=base, quote=quote))

    async def get_trades(self, pair: str) -> ApiResponse:
        base, quote = _split_pair(pair)
        return await self.get(constants.MARKET_TRADES.format(base=base, quote=quote))


def _split_pair(pair: str) -> tuple[str, str]:
    if "/" not in pair:
        raise ValueError(f"Unsupported pair format: {pair}")
    base, quote = pair.split("/", 1)
    return base, quote


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
