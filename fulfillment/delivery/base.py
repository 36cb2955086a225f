"""Provider-neutral types shared by the courier clients."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from fulfillment.models.order import DeliveryProvider, DeliveryStatus

logger = logging.getLogger(__name__)


class DeliveryProviderError(Exception):
    """A courier API call failed; the dispatch is retried on the next sweep."""


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "US"

    def one_line(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}"


def parse_address(text: str, default_city: str = "Los Angeles", default_state: str = "CA",
                  default_zip: str = "90001") -> Address:
    """Split a free-form "street, city, STATE ZIP" string into parts."""
    parts = [p.strip() for p in (text or "").split(",")]
    state_zip = parts[2].split() if len(parts) > 2 and parts[2] else []
    return Address(
        street=parts[0] if parts and parts[0] else text,
        city=parts[1] if len(parts) > 1 and parts[1] else default_city,
        state=state_zip[0] if state_zip else default_state,
        zip_code=state_zip[1] if len(state_zip) > 1 else default_zip,
    )


class DispatchRequest(BaseModel):
    order_id: str
    order_number: int
    order_value_cents: int = 0
    pickup_address: Address
    pickup_name: str
    pickup_phone: str
    pickup_notes: str = ""
    dropoff_address: Address
    dropoff_name: str
    dropoff_phone: str
    dropoff_notes: str = ""


class DispatchResult(BaseModel):
    delivery_id: str
    status: Optional[str] = None
    tracking_url: Optional[str] = None


class DeliveryUpdate(BaseModel):
    """One provider callback, reduced to the fields the order store tracks."""

    delivery_id: str
    status: Optional[str] = None
    tracking_url: Optional[str] = None
    courier_name: Optional[str] = None
    courier_phone: Optional[str] = None
    courier_location: Optional[dict[str, Any]] = None
    eta: Optional[datetime] = None
    proof_of_delivery: Optional[dict[str, Any]] = None
    # only the delivery id is known; call fetch_details once an order matches
    needs_details: bool = False


class DeliveryClient(ABC):
    """A courier provider: create deliveries and read its webhooks."""

    provider: DeliveryProvider
    status_map: dict[str, DeliveryStatus] = {}

    def __init__(self, timeout: float, http: Optional[httpx.Client] = None):
        self._owns_http = http is None
        self.http = http or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def normalize_status(self, raw: Optional[str]) -> Optional[DeliveryStatus]:
        """Map a provider status onto the canonical vocabulary; None if unknown."""
        if not raw:
            return None
        return self.status_map.get(raw.strip().lower())

    def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise DeliveryProviderError(f"{self.provider.value} request failed: {e}") from e
        if response.is_error:
            raise DeliveryProviderError(
                f"{self.provider.value} API error {response.status_code}: {response.text[:500]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise DeliveryProviderError(f"{self.provider.value} returned invalid JSON") from e

    @abstractmethod
    def create_delivery(self, request: DispatchRequest) -> DispatchResult:
        ...

    @abstractmethod
    def verify_webhook(self, headers: dict[str, str], body: bytes) -> None:
        """Raise ``WebhookAuthError`` if the callback is not from the provider."""

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> DeliveryUpdate:
        """Raise ``MalformedPayload`` if the delivery cannot be identified."""

    def fetch_details(self, update_: DeliveryUpdate) -> DeliveryUpdate:
        """Complete a reference-only update from the provider API."""
        return update_
