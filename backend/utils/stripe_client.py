# backend/utils/stripe_client.py
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urljoin

import httpx
from fastapi import Request

from config import Settings
from utils.errors import PaymentFailed

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    id: str
    status: str
    client_secret: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    receipt_email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def requires_action(self) -> bool:
        return self.status == "requires_action"

    @classmethod
    def from_api(cls, data: dict) -> "PaymentIntent":
        return cls(
            id=data["id"],
            status=data.get("status", ""),
            client_secret=data.get("client_secret"),
            amount=data.get("amount"),
            currency=data.get("currency"),
            receipt_email=data.get("receipt_email"),
            metadata=data.get("metadata") or {},
        )


class StripeClient:
    """Card payment gateway speaking the Stripe REST API."""

    def __init__(self, api_key: str, api_url: str = "https://api.stripe.com", timeout: float = 10.0):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeClient":
        return cls(api_key=settings.STRIPE_SECRET_KEY, api_url=settings.STRIPE_API_URL)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        url = urljoin(self.api_url, path)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(method, url, data=data, headers=self._headers())
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                # Stripe reports the reason in {"error": {"message": ...}}
                try:
                    reason = e.response.json().get("error", {}).get("message") or e.response.text
                except ValueError:
                    reason = e.response.text
                logger.error("Stripe %s %s failed (%s): %s", method, path, e.response.status_code, reason)
                raise PaymentFailed(f"Payment processing failed: {reason}")
            except httpx.RequestError as e:
                logger.error("Stripe %s %s transport error: %s", method, path, e)
                raise PaymentFailed("Payment gateway unavailable")

    async def create_payment_intent(self, amount_minor: int, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        # Stripe expects form-encoded bodies with bracketed nested keys
        payload = {
            "amount": str(amount_minor),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            payload[f"metadata[{key}]"] = str(value)

        data = await self._request("POST", "/v1/payment_intents", data=payload)
        intent = PaymentIntent.from_api(data)
        logger.info("Created payment intent %s for %s %s", intent.id, amount_minor, currency)
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        data = await self._request("GET", f"/v1/payment_intents/{intent_id}")
        return PaymentIntent.from_api(data)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def _parse_signature_header(header: str) -> Optional[tuple]:
    timestamp, signatures = None, []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        return None
    return timestamp, signatures


def verify_stripe_signature(
    payload: bytes, header: str, secret: str, tolerance: int = 300, now: Optional[float] = None
) -> bool:
    """Verifies the ``Stripe-Signature`` header of a webhook delivery."""
    if not header or not secret:
        return False

    parsed = _parse_signature_header(header)
    if parsed is None:
        return False
    timestamp, signatures = parsed

    try:
        ts = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if tolerance and abs(current - ts) > tolerance:
        return False

    signed_payload = timestamp.encode("utf-8") + b"." + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, sig) for sig in signatures)


def parse_event(payload: bytes) -> dict:
    event = json.loads(payload)
    if not isinstance(event, dict) or "type" not in event:
        raise ValueError("Not a webhook event")
    return event


# FastAPI dependency; the gateway is built once in create_app
def get_payment_gateway(request: Request):
    return request.app.state.payment_gateway
