"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates all tables for order fulfillment:
user_profiles, orders, order_items, points_ledger, notifications,
events, event_reservations, payment_webhook_events.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

payment_status = sa.Enum("pending", "processing", "succeeded", "failed", "canceled", name="paymentstatus")
order_status = sa.Enum("pending", "preparing", "ready", "completed", "cancelled", name="orderstatus")
delivery_provider = sa.Enum("uber", "doordash", name="deliveryprovider")
delivery_status = sa.Enum(
    "pending", "en_route_to_pickup", "at_pickup", "en_route_to_dropoff", "delivered", "canceled",
    name="deliverystatus",
)
notification_category = sa.Enum("order", "payment", "delivery", "event", "points", name="notificationcategory")


def upgrade() -> None:
    # --- user_profiles ---
    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, server_default=""),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("points >= 0", name="ck_user_profiles_points_non_negative"),
    )

    # --- orders ---
    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(36), primary_key=True),
        sa.Column("order_number", sa.Integer, nullable=False, unique=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("user_profiles.user_id"), nullable=False),
        sa.Column("total", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("points_earned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payment_status", payment_status, nullable=False, server_default="pending"),
        sa.Column("status", order_status, nullable=False, server_default="pending"),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("payment_failure_reason", sa.String(500), nullable=True),
        sa.Column("cancellation_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_address", sa.String(500), nullable=True),
        sa.Column("pickup_notes", sa.Text, nullable=True),
        sa.Column("delivery_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_provider", delivery_provider, nullable=True),
        sa.Column("external_delivery_id", sa.String(255), nullable=True, unique=True),
        sa.Column("provider_delivery_status", sa.String(100), nullable=True),
        sa.Column("delivery_status", delivery_status, nullable=True),
        sa.Column("tracking_url", sa.String(1000), nullable=True),
        sa.Column("courier_name", sa.String(255), nullable=True),
        sa.Column("courier_phone", sa.String(50), nullable=True),
        sa.Column("courier_location", sa.JSON, nullable=True),
        sa.Column("delivery_eta", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proof_of_delivery", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # the dispatch sweep scans for due, untriggered orders
    op.create_index("ix_orders_dispatch_due", "orders", ["delivery_scheduled_at", "delivery_triggered_at"])

    # --- order_items ---
    op.create_table(
        "order_items",
        sa.Column("item_id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.order_id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
    )

    # --- points_ledger ---
    op.create_table(
        "points_ledger",
        sa.Column("entry_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("user_profiles.user_id"), nullable=False, index=True),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("correlation_id", sa.String(255), nullable=True, unique=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.order_id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- notifications ---
    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("user_profiles.user_id"), nullable=False, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("category", notification_category, nullable=False, server_default="order"),
        sa.Column("read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("action_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- events ---
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("capacity", sa.Integer, nullable=False),
        sa.Column("available_spots", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("available_spots >= 0", name="ck_events_spots_non_negative"),
        sa.CheckConstraint("available_spots <= capacity", name="ck_events_spots_within_capacity"),
    )

    # --- event_reservations ---
    op.create_table(
        "event_reservations",
        sa.Column("reservation_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("user_profiles.user_id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_reservations_event_user"),
    )

    # --- payment_webhook_events ---
    op.create_table(
        "payment_webhook_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("order_id", sa.String(36), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("payment_webhook_events")
    op.drop_table("event_reservations")
    op.drop_table("events")
    op.drop_table("notifications")
    op.drop_table("points_ledger")
    op.drop_table("order_items")
    op.drop_index("ix_orders_dispatch_due", table_name="orders")
    op.drop_table("orders")
    op.drop_table("user_profiles")
    for enum_type in (notification_category, delivery_status, delivery_provider, order_status, payment_status):
        enum_type.drop(op.get_bind(), checkfirst=True)
