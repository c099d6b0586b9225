"""Payment provider abstraction and the Creem checkout client."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from config import require_payment_provider_key, settings
from services.billing_errors import ProviderUnavailable

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "completed"
CHECKOUT_FAILED_STATUSES = ("expired", "failed")


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    status: str
    checkout_url: Optional[str] = None
    request_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    name: str

    @abstractmethod
    async def create_checkout(
        self,
        *,
        request_id: str,
        units: int,
        success_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        raise NotImplementedError

    @abstractmethod
    async def retrieve_checkout(self, checkout_id: str) -> CheckoutSession:
        raise NotImplementedError


def _session_from_payload(payload: Dict[str, Any]) -> CheckoutSession:
    checkout_id = str(payload.get("id") or "").strip()
    if not checkout_id:
        raise ProviderUnavailable("Payment provider returned a checkout without an id.")
    return CheckoutSession(
        id=checkout_id,
        status=str(payload.get("status") or "").strip().lower(),
        checkout_url=payload.get("checkout_url"),
        request_id=payload.get("request_id"),
        raw=payload,
    )


class CreemPaymentProvider(PaymentProvider):
    """Creem REST client; every call is bounded by the configured timeout."""

    name = "creem"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        product_id: str,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.product_id = product_id
        self.timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"x-api-key": self.api_key},
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Payment provider timeout on %s %s", method, path)
            raise ProviderUnavailable("Payment provider timed out. Try again shortly.") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Payment provider returned %s on %s %s", exc.response.status_code, method, path
            )
            raise ProviderUnavailable("Payment provider rejected the request.") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Payment provider call failed on %s %s: %s", method, path, exc)
            raise ProviderUnavailable("Payment provider is unavailable. Try again shortly.") from exc

    async def create_checkout(
        self,
        *,
        request_id: str,
        units: int,
        success_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        payload = await self._request(
            "POST",
            "/v1/checkouts",
            json={
                "product_id": self.product_id,
                "request_id": request_id,
                "units": units,
                "success_url": success_url,
                "metadata": metadata,
            },
        )
        return _session_from_payload(payload)

    async def retrieve_checkout(self, checkout_id: str) -> CheckoutSession:
        payload = await self._request("GET", "/v1/checkouts", params={"checkout_id": checkout_id})
        return _session_from_payload(payload)


def get_payment_provider() -> PaymentProvider:
    """FastAPI dependency returning the configured provider for this request."""
    if not settings.BILLING_ENABLED:
        raise ProviderUnavailable("Billing is disabled. Enable BILLING_ENABLED to use checkout.")
    try:
        api_key = require_payment_provider_key()
    except ValueError as exc:
        raise ProviderUnavailable("Payment provider is not configured.") from exc
    return CreemPaymentProvider(
        api_key=api_key,
        base_url=settings.PAYMENT_PROVIDER_BASE_URL,
        product_id=settings.PAYMENT_PROVIDER_PRODUCT_ID,
        timeout_seconds=settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
    )


def get_optional_payment_provider() -> Optional[PaymentProvider]:
    """Like get_payment_provider, but None when checkout is not configured."""
    try:
        return get_payment_provider()
    except ProviderUnavailable:
        return None
