import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

from app.studiofinder.models import Base
import app.studiofinder.modules.studios.models  # noqa: F401
import app.studiofinder.modules.memberships.models  # noqa: F401
import app.studiofinder.modules.reviews.models  # noqa: F401
import app.studiofinder.modules.messages.models  # noqa: F401
import app.studiofinder.modules.notifications.models  # noqa: F401
import app.studiofinder.modules.support.models  # noqa: F401
import app.studiofinder.modules.error_log.models  # noqa: F401
import app.studiofinder.modules.rate_limiting.models  # noqa: F401

load_dotenv()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

database_url = (os.environ.get("DATABASE_URL") or "").strip()
if not database_url:
    raise RuntimeError("DATABASE_URL is required to run migrations.")
config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
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
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
