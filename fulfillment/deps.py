"""Shared FastAPI dependencies."""
from typing import Callable

from fastapi import Depends, Request

from fulfillment.config import Settings, get_settings
from fulfillment.delivery import DeliveryClient, get_client


async def raw_body(request: Request) -> bytes:
    """Unparsed request body, needed for signature checks."""
    return await request.body()


def get_delivery_client_factory(settings: Settings = Depends(get_settings)) -> Callable[..., DeliveryClient]:
    """Return a callable building a courier client for a provider name."""
    def factory(provider) -> DeliveryClient:
        return get_client(provider, settings)
    return factory
