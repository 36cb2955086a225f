"""Courier providers behind one interface."""
from typing import Optional

import httpx

from fulfillment.config import Settings
from fulfillment.delivery.base import (  # noqa: F401
    Address,
    DeliveryClient,
    DeliveryProviderError,
    DeliveryUpdate,
    DispatchRequest,
    DispatchResult,
    parse_address,
)
from fulfillment.delivery.doordash import DoorDashClient
from fulfillment.delivery.uber import UberDirectClient
from fulfillment.models.order import DeliveryProvider


def get_client(provider, settings: Settings, http: Optional[httpx.Client] = None) -> DeliveryClient:
    """Build the client for ``provider`` from the loaded settings."""
    provider = DeliveryProvider(provider)
    timeout = settings.DELIVERY_HTTP_TIMEOUT_SECONDS
    if provider == DeliveryProvider.uber:
        return UberDirectClient(
            client_id=settings.UBER_CLIENT_ID,
            client_secret=settings.UBER_CLIENT_SECRET,
            customer_id=settings.UBER_CUSTOMER_ID,
            webhook_signing_key=settings.UBER_WEBHOOK_SIGNING_KEY,
            timeout=timeout,
            http=http,
        )
    return DoorDashClient(
        developer_id=settings.DOORDASH_DEVELOPER_ID,
        key_id=settings.DOORDASH_KEY_ID,
        signing_secret=settings.DOORDASH_SIGNING_SECRET,
        webhook_auth_token=settings.DOORDASH_WEBHOOK_AUTH_TOKEN,
        timeout=timeout,
        http=http,
    )
