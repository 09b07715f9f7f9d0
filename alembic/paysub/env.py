from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from paysub.common.config import settings
from paysub.common.db import Base, async_database_url
from paysub.services.payments import models as payment_models  # noqa: F401
from paysub.services.subscriptions import models as subscription_models  # noqa: F401

config = context.config

# psycopg 3 serves sync and async connections under the same URL scheme.
config.set_main_option("sqlalchemy.url", async_database_url(settings.database_url))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
