"""Thin async gateway over the Square REST API."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from salonref_api.core.settings import Settings


class SquareAPIError(RuntimeError):
    """Raised when Square rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[dict[str, Any]] | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
        self.path = path

    @property
    def codes(self) -> list[str]:
        return [str(error.get("code")) for error in self.errors if error.get("code")]


class SquareClient:
    """Holds one pooled ``httpx.AsyncClient`` for the lifetime of the process."""

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str,
        api_version: str,
        location_id: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.location_id = location_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Square-Version": api_version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "SquareClient":
        options: dict[str, Any] = {
            "access_token": settings.square_access_token,
            "base_url": settings.square_base_url,
            "api_version": settings.square_api_version,
            "location_id": settings.square_location_id,
            "timeout_seconds": settings.square_timeout_seconds,
        }
        options.update(overrides)
        return cls(**options)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Square request failed", method=method, path=path, error=str(exc))
            raise SquareAPIError(f"Square request failed: {exc}", path=path) from exc

        if allow_not_found and response.status_code == 404:
            return None

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            errors = body.get("errors") if isinstance(body, dict) else None
            logger.warning(
                "Square returned HTTP error",
                method=method,
                path=path,
                status=response.status_code,
                errors=errors,
            )
            raise SquareAPIError(
                f"Square {method} {path} failed with {response.status_code}",
                status_code=response.status_code,
                errors=errors if isinstance(errors, list) else None,
                path=path,
            )
        return body if isinstance(body, dict) else {}

    # Customers

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any] | None:
        body = await self._request("GET", f"/v2/customers/{customer_id}", allow_not_found=True)
        return body.get("customer") if body else None

    async def list_customer_custom_attributes(self, customer_id: str) -> list[dict[str, Any]]:
        attributes: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"limit": 100}
            if cursor:
                params["cursor"] = cursor
            body = await self._request(
                "GET",
                f"/v2/customers/{customer_id}/custom-attributes",
                params=params,
                allow_not_found=True,
            )
            if not body:
                return attributes
            attributes.extend(body.get("custom_attributes") or [])
            cursor = body.get("cursor")
            if not cursor:
                return attributes

    # Gift cards

    async def create_gift_card(self, *, idempotency_key: str) -> dict[str, Any]:
        body = await self._request(
            "POST",
            "/v2/gift-cards",
            json={
                "idempotency_key": idempotency_key,
                "location_id": self.location_id,
                "gift_card": {"type": "DIGITAL"},
            },
        )
        return body["gift_card"]

    async def create_gift_card_activity(self, *, idempotency_key: str, activity: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "POST",
            "/v2/gift-cards/activities",
            json={
                "idempotency_key": idempotency_key,
                "gift_card_activity": {"location_id": self.location_id, **activity},
            },
        )
        return body["gift_card_activity"]

    async def activate_gift_card(
        self,
        gift_card_id: str,
        *,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        reference_id: str | None = None,
    ) -> dict[str, Any]:
        details: dict[str, Any] = {
            "amount_money": {"amount": amount_cents, "currency": currency},
            "buyer_payment_instrument_ids": ["referral-program"],
        }
        if reference_id:
            details["reference_id"] = reference_id
        return await self.create_gift_card_activity(
            idempotency_key=idempotency_key,
            activity={
                "type": "ACTIVATE",
                "gift_card_id": gift_card_id,
                "activate_activity_details": details,
            },
        )

    async def load_gift_card(
        self,
        gift_card_id: str,
        *,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> dict[str, Any]:
        return await self.create_gift_card_activity(
            idempotency_key=idempotency_key,
            activity={
                "type": "ADJUST_INCREMENT",
                "gift_card_id": gift_card_id,
                "adjust_increment_activity_details": {
                    "amount_money": {"amount": amount_cents, "currency": currency},
                    "reason": "COMPLIMENTARY",
                },
            },
        )

    async def link_customer_to_gift_card(self, gift_card_id: str, customer_id: str) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"/v2/gift-cards/{gift_card_id}/link-customer",
            json={"customer_id": customer_id},
        )
        return body["gift_card"]

    async def retrieve_gift_card(self, gift_card_id: str) -> dict[str, Any] | None:
        body = await self._request("GET", f"/v2/gift-cards/{gift_card_id}", allow_not_found=True)
        return body.get("gift_card") if body else None

    async def retrieve_gift_card_from_gan(self, gan: str) -> dict[str, Any] | None:
        body = await self._request("POST", "/v2/gift-cards/from-gan", json={"gan": gan}, allow_not_found=True)
        return body.get("gift_card") if body else None

    # Orders

    async def retrieve_order(self, order_id: str) -> dict[str, Any] | None:
        body = await self._request("GET", f"/v2/orders/{order_id}", allow_not_found=True)
        return body.get("order") if body else None


def gift_card_balance_cents(gift_card: dict[str, Any] | None) -> int | None:
    """Return the balance of a Square gift card payload in cents."""

    if not gift_card:
        return None
    money = gift_card.get("balance_money") or {}
    amount = money.get("amount")
    return int(amount) if amount is not None else None
