"""DoorDash Drive courier client."""
import base64
import hmac
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import jwt

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

API_BASE = "https://openapi.doordash.com/drive/v2"

# webhook event names -> delivery_status vocabulary
EVENT_STATUSES = {
    "DELIVERY_CREATED": "created",
    "DASHER_CONFIRMED": "confirmed",
    "DASHER_ENROUTE_TO_PICKUP": "enroute_to_pickup",
    "DASHER_CONFIRMED_PICKUP_ARRIVAL": "arrived_at_pickup",
    "DASHER_PICKED_UP": "picked_up",
    "DASHER_ENROUTE_TO_DROPOFF": "enroute_to_dropoff",
    "DASHER_CONFIRMED_DROPOFF_ARRIVAL": "arrived_at_dropoff",
    "DASHER_DROPPED_OFF": "delivered",
    "DELIVERY_CANCELLED": "cancelled",
    "DELIVERY_RETURNED": "returned",
}


def _decode_secret(secret: str) -> bytes:
    padded = secret + "=" * (-len(secret) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except ValueError:
        return secret.encode()


class DoorDashClient(DeliveryClient):
    provider = DeliveryProvider.doordash
    status_map = {
        "created": DeliveryStatus.pending,
        "quote": DeliveryStatus.pending,
        "confirmed": DeliveryStatus.en_route_to_pickup,
        "enroute_to_pickup": DeliveryStatus.en_route_to_pickup,
        "arrived_at_pickup": DeliveryStatus.at_pickup,
        "picked_up": DeliveryStatus.en_route_to_dropoff,
        "enroute_to_dropoff": DeliveryStatus.en_route_to_dropoff,
        "arrived_at_dropoff": DeliveryStatus.en_route_to_dropoff,
        "delivered": DeliveryStatus.delivered,
        "cancelled": DeliveryStatus.canceled,
        "returned": DeliveryStatus.canceled,
    }

    def __init__(self, developer_id: str, key_id: str, signing_secret: str,
                 webhook_auth_token: str = "", timeout: float = 15.0,
                 http: Optional[httpx.Client] = None):
        super().__init__(timeout=timeout, http=http)
        self.developer_id = developer_id
        self.key_id = key_id
        self.signing_secret = signing_secret
        self.webhook_auth_token = webhook_auth_token

    def _token(self) -> str:
        """Short-lived DD-JWT-V1 token signed with the developer secret."""
        if not (self.developer_id and self.key_id and self.signing_secret):
            raise DeliveryProviderError("DoorDash API credentials not configured")
        now = int(time.time())
        return jwt.encode(
            {"aud": "doordash", "iss": self.developer_id, "kid": self.key_id, "iat": now, "exp": now + 300},
            _decode_secret(self.signing_secret),
            algorithm="HS256",
            headers={"dd-ver": "DD-JWT-V1"},
        )

    def create_delivery(self, request: DispatchRequest) -> DispatchResult:
        now = datetime.now(timezone.utc)
        payload = {
            # DoorDash keys deliveries by our id; a repeated create is rejected upstream
            "external_delivery_id": request.order_id,
            "pickup_address": request.pickup_address.one_line(),
            "pickup_business_name": request.pickup_name,
            "pickup_phone_number": request.pickup_phone,
            "pickup_instructions": request.pickup_notes,
            "dropoff_address": request.dropoff_address.one_line(),
            "dropoff_contact_given_name": request.dropoff_name,
            "dropoff_phone_number": request.dropoff_phone,
            "dropoff_instructions": request.dropoff_notes,
            "order_value": request.order_value_cents,
            "pickup_time": now.isoformat(),
            "dropoff_time": (now + timedelta(minutes=30)).isoformat(),
        }
        logger.info("Creating DoorDash delivery for order %s", request.order_id)
        data = self._request(
            "POST", f"{API_BASE}/deliveries",
            json=payload, headers={"Authorization": f"Bearer {self._token()}"},
        )
        delivery_id = data.get("external_delivery_id") or request.order_id
        return DispatchResult(delivery_id=delivery_id, status=data.get("delivery_status"),
                              tracking_url=data.get("tracking_url"))

    def verify_webhook(self, headers: dict[str, str], body: bytes) -> None:
        if not self.webhook_auth_token:
            return
        supplied = headers.get("authorization") or ""
        if not hmac.compare_digest(supplied, self.webhook_auth_token):
            raise WebhookAuthError("Invalid DoorDash webhook credentials")

    def parse_webhook(self, payload: dict[str, Any]) -> DeliveryUpdate:
        delivery_id = payload.get("external_delivery_id")
        if not delivery_id:
            raise MalformedPayload("Missing external_delivery_id in webhook data")

        status = payload.get("delivery_status") or EVENT_STATUSES.get(payload.get("event_name") or "")
        return DeliveryUpdate(
            delivery_id=delivery_id,
            status=status,
            tracking_url=payload.get("tracking_url"),
            courier_name=payload.get("dasher_name"),
            courier_phone=payload.get("dasher_phone_number") or payload.get("dasher_dropoff_phone_number"),
            courier_location=payload.get("dasher_location"),
            eta=payload.get("estimated_dropoff_time") or payload.get("dropoff_time_estimated"),
            proof_of_delivery=payload.get("proof_of_delivery"),
        )
