"""Domain errors raised by the services.

Each is an ``HTTPException`` so routers can let it propagate unchanged, while
callers and tests can still tell the categories apart by type.
"""
from fastapi import HTTPException, status


class WebhookVerificationError(HTTPException):
    def __init__(self, detail: str = "Webhook signature verification failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class WebhookAuthError(HTTPException):
    def __init__(self, detail: str = "Webhook authentication failed"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class MalformedPayload(HTTPException):
    def __init__(self, detail: str = "Malformed webhook payload"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class EventNotFound(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")


class OrderNotFound(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")


class AlreadyReserved(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="You have already RSVP'd to this event")


class SoldOut(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="No spots available for this event")


class ReservationConflict(HTTPException):
    """Another request changed the spot count first; safe to retry."""

    def __init__(self):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Failed to reserve spot, another reservation was made at the same time. Try again.",
        )


class InsufficientPoints(HTTPException):
    def __init__(self, balance: int, required: int):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient points: {required} required, {balance} available",
        )


class CancellationWindowClosed(HTTPException):
    def __init__(self, detail: str = "This order can no longer be cancelled"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
