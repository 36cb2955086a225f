"""Uber Direct courier client."""
import hashlib
import hmac
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from fulfillment.delivery.base import (
    DeliveryClient,
    DeliveryProviderError,
    DeliveryUpdate,
    DispatchRequest,
    DispatchResult,
)
from fulfillment.exceptions import MalformedPayload, WebhookAuthError
from fulfillment.models.order import DeliveryProvider, DeliveryStatus

logger = logging.getLogger(__name__)

TOKEN_URL = "https://login.uber.com/oauth/v2/token"
API_BASE = "https://api.uber.com/v1"


class UberDirectClient(DeliveryClient):
    provider = DeliveryProvider.uber
    status_map = {
        "pending": DeliveryStatus.pending,
        "pickup": DeliveryStatus.en_route_to_pickup,
        "en_route_to_pickup": DeliveryStatus.en_route_to_pickup,
        "at_pickup": DeliveryStatus.at_pickup,
        "pickup_complete": DeliveryStatus.en_route_to_dropoff,
        "dropoff": DeliveryStatus.en_route_to_dropoff,
        "en_route_to_dropoff": DeliveryStatus.en_route_to_dropoff,
        "delivered": DeliveryStatus.delivered,
        "canceled": DeliveryStatus.canceled,
        "returned": DeliveryStatus.canceled,
    }

    def __init__(self, client_id: str, client_secret: str, customer_id: str,
                 webhook_signing_key: str = "", timeout: float = 15.0,
                 http: Optional[httpx.Client] = None):
        super().__init__(timeout=timeout, http=http)
        self.client_id = client_id
        self.client_secret = client_secret
        self.customer_id = customer_id
        self.webhook_signing_key = webhook_signing_key
        self._token: Optional[str] = None
        self._token_expires = 0.0

    def _access_token(self) -> str:
        if not (self.client_id and self.client_secret and self.customer_id):
            raise DeliveryProviderError("Uber Direct API credentials not configured")
        if self._token and time.monotonic() < self._token_expires:
            return self._token

        data = self._request("POST", TOKEN_URL, data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
            "scope": "eats.deliveries",
        })
        token = data.get("access_token")
        if not token:
            raise DeliveryProviderError("Uber OAuth response did not include an access token")
        self._token = token
        # refresh a minute early
        self._token_expires = time.monotonic() + max(int(data.get("expires_in", 0)) - 60, 0)
        return token

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token()}"}

    def create_delivery(self, request: DispatchRequest) -> DispatchResult:
        now = datetime.now(timezone.utc)
        payload = {
            "external_id": request.order_id,
            "pickup_name": request.pickup_name,
            "pickup_phone_number": request.pickup_phone,
            "pickup_address": request.pickup_address.one_line(),
            "pickup_notes": request.pickup_notes,
            "dropoff_name": request.dropoff_name,
            "dropoff_phone_number": request.dropoff_phone,
            "dropoff_address": request.dropoff_address.one_line(),
            "dropoff_notes": request.dropoff_notes,
            "manifest_items": [{"name": f"Order #{request.order_number}", "quantity": 1}],
            "manifest_total_value": request.order_value_cents,
            "pickup_ready_dt": now.isoformat(),
            "dropoff_deadline_dt": (now + timedelta(minutes=30)).isoformat(),
        }
        logger.info("Creating Uber Direct delivery for order %s", request.order_id)
        data = self._request(
            "POST", f"{API_BASE}/customers/{self.customer_id}/deliveries",
            json=payload, headers=self._headers(),
        )
        if not data.get("id"):
            raise DeliveryProviderError("Uber Direct response did not include a delivery id")
        return DispatchResult(delivery_id=data["id"], status=data.get("status"),
                              tracking_url=data.get("tracking_url"))

    def get_delivery(self, delivery_id: str) -> dict[str, Any]:
        return self._request(
            "GET", f"{API_BASE}/customers/{self.customer_id}/deliveries/{delivery_id}",
            headers=self._headers(),
        )

    def verify_webhook(self, headers: dict[str, str], body: bytes) -> None:
        if not self.webhook_signing_key:
            return
        signature = headers.get("x-uber-signature") or headers.get("x-postmates-signature")
        if not signature:
            raise WebhookAuthError("Missing Uber webhook signature")
        expected = hmac.new(self.webhook_signing_key.encode(), body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(signature.strip().lower(), expected):
            raise WebhookAuthError("Invalid Uber webhook signature")

    def parse_webhook(self, payload: dict[str, Any]) -> DeliveryUpdate:
        meta = payload.get("meta") or {}
        data = payload.get("data") if isinstance(payload.get("data"), dict) else None
        delivery_id = payload.get("delivery_id") or meta.get("resource_id") or (data or {}).get("id")
        if not delivery_id:
            raise MalformedPayload("Missing delivery id in Uber webhook")

        if data is not None:
            return self._update_from(delivery_id, {"status": payload.get("status"), **data})
        if payload.get("status"):
            return self._update_from(delivery_id, payload)
        # event carries only a reference
        return DeliveryUpdate(delivery_id=delivery_id, needs_details=True)

    def fetch_details(self, update_: DeliveryUpdate) -> DeliveryUpdate:
        if not update_.needs_details:
            return update_
        return self._update_from(update_.delivery_id, self.get_delivery(update_.delivery_id))

    @staticmethod
    def _update_from(delivery_id: str, delivery: dict[str, Any]) -> DeliveryUpdate:
        courier = delivery.get("courier") or {}
        proof = delivery.get("proof_of_delivery") or (delivery.get("dropoff") or {}).get("verification")
        return DeliveryUpdate(
            delivery_id=delivery_id,
            status=delivery.get("status"),
            tracking_url=delivery.get("tracking_url"),
            courier_name=courier.get("name"),
            courier_phone=courier.get("phone_number"),
            courier_location=courier.get("location"),
            eta=delivery.get("dropoff_eta"),
            proof_of_delivery=proof or None,
        )
