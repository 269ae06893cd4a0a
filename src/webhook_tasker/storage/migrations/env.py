"""
Alembic env.py.

DSN: `alembic -x dsn=...` или POSTGRES_DSN из настроек (alembic.ini URL не хранит).
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from webhook_tasker.common.config import get_settings
from webhook_tasker.storage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _dsn() -> str:
    return context.get_x_argument(as_dictionary=True).get("dsn") or get_settings().postgres_dsn


def _configure(**kwargs) -> None:
    # enum-типы и размеры строк должны попадать в autogenerate
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


if context.is_offline_mode():
    _configure(url=_dsn(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = create_engine(_dsn(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
