"""
Payment gateway HTTP client (Asaas-compatible REST API).

Handles:
- Authentication headers
- Per-attempt timeout
- Bounded retries with exponential backoff for transport errors,
  timeouts, 5xx and 429
- Error classification into the GatewayError hierarchy
- Webhook access token validation

The client never touches local state. It is created once per
application (see main.lifespan) and injected where needed.

API Docs: https://docs.asaas.com/
"""
import asyncio
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from settlement.config import Settings, settings as default_settings
from settlement.core.exceptions import (
    GatewayError,
    GatewayRejection,
    GatewayServerError,
    GatewayTimeoutError,
    GatewayTransportError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Exponential backoff: initial_delay * multiplier^(attempt-1), capped at max_delay."""
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 10000

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay_ms = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000


class GatewayClient:
    """Async client for the payment gateway REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        environment: str = "sandbox",
        webhook_token: Optional[str] = None,
        user_agent: str = "StylloBarber/1.0",
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.environment = environment
        self.webhook_token = webhook_token
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Content-Type": "application/json",
                "access_token": api_key,
                "User-Agent": user_agent,
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "GatewayClient":
        settings = settings or default_settings
        kwargs = dict(
            base_url=settings.GATEWAY_API_URL,
            api_key=settings.GATEWAY_API_KEY,
            environment=settings.GATEWAY_ENVIRONMENT,
            webhook_token=settings.GATEWAY_WEBHOOK_TOKEN,
            user_agent=settings.GATEWAY_USER_AGENT,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            retry=RetryPolicy(
                max_attempts=settings.GATEWAY_RETRY_MAX_ATTEMPTS,
                initial_delay_ms=settings.GATEWAY_RETRY_INITIAL_DELAY_MS,
                backoff_multiplier=settings.GATEWAY_RETRY_BACKOFF_MULTIPLIER,
                max_delay_ms=settings.GATEWAY_RETRY_MAX_DELAY_MS,
            ),
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def is_sandbox(self) -> bool:
        return self.environment == "sandbox"

    async def send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make an API request, retrying retryable failures.

        Raises:
            GatewayRejection: 4xx response (raised after retries only for 429)
            GatewayServerError: 5xx on every attempt
            GatewayTimeoutError: per-attempt timeout on every attempt
            GatewayTransportError: connection failure on every attempt
        """
        max_attempts = max(1, self.retry.max_attempts)

        for attempt in range(1, max_attempts + 1):
            try:
                return await self._send_once(method, path, json, params)
            except GatewayError as e:
                if not e.retryable or attempt == max_attempts:
                    logger.error(
                        f"Gateway {method} {path} failed after {attempt} attempt(s): {e.message}"
                    )
                    raise

                delay = self.retry.delay_for(attempt)
                logger.warning(
                    f"Gateway {method} {path} attempt {attempt}/{max_attempts} failed: "
                    f"{e.message}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

    async def _send_once(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException:
            raise GatewayTimeoutError()
        except httpx.TransportError as e:
            raise GatewayTransportError(str(e) or type(e).__name__)

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if not isinstance(error_data, dict):
                error_data = {}

            errors = error_data.get("errors") or []
            first = errors[0] if errors and isinstance(errors[0], dict) else {}
            message = first.get("description") or response.reason_phrase or "Request failed"

            if response.status_code >= 500:
                raise GatewayServerError(response.status_code, message, error_data)
            raise GatewayRejection(response.status_code, message, error_data)

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            raise GatewayError(response.status_code, "Invalid JSON in gateway response")

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.send("GET", path, params=params)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.send("POST", path, json=json)

    async def put(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.send("PUT", path, json=json)

    async def delete(self, path: str) -> Dict[str, Any]:
        return await self.send("DELETE", path)

    def validate_webhook(self, token: Optional[str]) -> bool:
        """
        Check the webhook access token header.

        Always valid in sandbox.
        """
        if self.is_sandbox:
            return True

        if not self.webhook_token:
            logger.warning("Webhook token not configured")
            return False

        if not token:
            return False

        is_valid = hmac.compare_digest(self.webhook_token.encode(), token.encode())
        if not is_valid:
            logger.warning("Invalid webhook access token")
        return is_valid

    async def get_account_info(self) -> Dict[str, Any]:
        return await self.get("/myAccount")

    async def test_connection(self) -> bool:
        """True when the API key is accepted."""
        try:
            await self.get_account_info()
            return True
        except GatewayError as e:
            logger.error(f"Gateway connection test failed: {e.message}")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
