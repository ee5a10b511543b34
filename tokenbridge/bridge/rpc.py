"""
JSON-RPC Transport

A thin async JSON-RPC 2.0 client over ``httpx.AsyncClient`` shared by both
ledger adapters.

Transport failures (connection errors, timeouts, HTTP 5xx / 429) are
retried with capped exponential backoff and then surfaced as
``LedgerUnavailable``. A JSON-RPC ``error`` object is a definite answer
from the node and is never retried; it is raised as ``RpcError`` for the
adapter to translate.
"""

import asyncio
import itertools
import json
import time
from typing import Any, List, Optional

import httpx

from ..constants import (
    LOG_INCLUDE_RPC_CONTENT,
    LOG_MAX_PARAMS_LENGTH,
    RPC_BACKOFF_BASE,
    RPC_BACKOFF_MAX,
    RPC_MAX_ATTEMPTS,
    RPC_TIMEOUT,
)
from ..exceptions import LedgerUnavailable, RpcError
from ..logger import get_logger

logger = get_logger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class JsonRpcClient:
    """
    Async JSON-RPC client for a single ledger node.

    Args:
        url: Node RPC endpoint
        client: Optional shared ``httpx.AsyncClient``; created (and owned) if omitted
        max_attempts: Transport attempts before ``LedgerUnavailable``
        backoff_base: First retry delay in seconds (doubles per attempt)
        backoff_max: Retry delay cap in seconds
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = RPC_MAX_ATTEMPTS,
        backoff_base: float = RPC_BACKOFF_BASE,
        backoff_max: float = RPC_BACKOFF_MAX,
        timeout: float = RPC_TIMEOUT,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.url = url
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    @staticmethod
    def _describe_params(params: List[Any]) -> str:
        if not LOG_INCLUDE_RPC_CONTENT:
            return ""
        text = json.dumps(params, default=str)
        if len(text) > LOG_MAX_PARAMS_LENGTH:
            text = text[:LOG_MAX_PARAMS_LENGTH] + "...[TRUNCATED]"
        return f" {text}"

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Invoke ``method`` and return its ``result``.

        Raises:
            RpcError: the node answered with a JSON-RPC error object
            LedgerUnavailable: transport failed on every attempt
        """
        params = params if params is not None else []
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        last_error: Optional[str] = None

        for attempt in range(self.max_attempts):
            start_time = time.monotonic()
            logger.debug(f"--> \"{method} {self.url}\"{self._describe_params(params)}")
            try:
                response = await self._client.post(self.url, json=payload)
                elapsed = time.monotonic() - start_time
                if response.status_code in _RETRYABLE_STATUS:
                    last_error = f"HTTP {response.status_code}"
                    logger.warning(
                        f"<-- \"{method} {self.url}\" {response.status_code} ({elapsed:.3f}s), "
                        f"attempt {attempt + 1}/{self.max_attempts}"
                    )
                else:
                    response.raise_for_status()
                    body = response.json()
                    logger.debug(f"<-- \"{method} {self.url}\" {response.status_code} ({elapsed:.3f}s)")
                    return self._unwrap(method, body)

            except httpx.RequestError as e:
                elapsed = time.monotonic() - start_time
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    f"<-- \"{method} {self.url}\" NETWORK_ERROR ({elapsed:.3f}s), "
                    f"attempt {attempt + 1}/{self.max_attempts}: {last_error}"
                )

            except (json.JSONDecodeError, httpx.HTTPStatusError) as e:
                # A non-retryable HTTP status or a garbled body: the node is
                # reachable but not speaking JSON-RPC to us.
                raise LedgerUnavailable(f"{method} on {self.url} failed: {e}") from e

            if attempt + 1 < self.max_attempts:
                await asyncio.sleep(self._backoff(attempt))

        raise LedgerUnavailable(
            f"{method} on {self.url} unavailable after {self.max_attempts} attempts: {last_error}"
        )

    @staticmethod
    def _unwrap(method: str, body: Any) -> Any:
        if not isinstance(body, dict):
            raise LedgerUnavailable(f"{method}: malformed JSON-RPC response")
        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcError(
                    int(error.get("code", -32000)),
                    str(error.get("message", "")),
                    error.get("data"),
                )
            raise RpcError(-32000, str(error))
        return body.get("result")
