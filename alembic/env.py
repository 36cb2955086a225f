"""Alembic environment configuration.

Reads the database URL from fulfillment.config and registers all models
so autogenerate can detect schema changes.
"""
from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context

from fulfillment.config import settings
from fulfillment.database import Base

# Import all models so they register with Base.metadata
from fulfillment.models.user import UserProfile  # noqa: F401
from fulfillment.models.order import Order, OrderItem  # noqa: F401
from fulfillment.models.points import PointsLedgerEntry  # noqa: F401
from fulfillment.models.notification import Notification  # noqa: F401
from fulfillment.models.event import Event, EventReservation  # noqa: F401
from fulfillment.models.payment_webhook_event import PaymentWebhookEvent  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
