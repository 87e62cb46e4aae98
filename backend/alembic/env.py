import sys
import os
from pathlib import Path
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BASE_DIR))

from ylportal.core.config import get_settings
from ylportal.db.base import Base
# registers every table on Base.metadata for autogenerate
from ylportal.models.user import User
from ylportal.models.bank_account import BankAccount
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.user_area import UserArea
from ylportal.models.movement import Movement
from ylportal.models.movement_approval import MovementApproval
from ylportal.models.audit_log import AuditLog

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata


def get_url() -> str:
    return os.environ.get("DATABASE_URL") or config.get_main_option("sqlalchemy.url") or get_settings().database_url


def _configure(db_url: str, **kw):
    # sqlite cannot ALTER constraints in place
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=db_url.startswith("sqlite"),
        **kw,
    )


def run_migrations_offline():
    url = get_url()
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        _configure(section["sqlalchemy.url"], connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
