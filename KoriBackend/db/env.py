from logging.config import fileConfig
import os
import re
import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine, pool
from alembic import context

# Ensure project root is on sys.path so `import KoriBackend...` works when CWD is KoriBackend/
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

load_dotenv(Path(PROJECT_ROOT) / ".env", override=False)

from KoriBackend.config import get_settings  # noqa: E402
from KoriBackend.database import Base  # noqa: E402
# Import all models so autogenerate sees every table in Base.metadata
import KoriBackend.models  # noqa: E402,F401

config = context.config


# Prefer an explicit alembic.ini URL (with ${VAR} placeholder support), else DATABASE_URL
def _get_migration_url() -> str:
    url = (config.get_main_option("sqlalchemy.url") or "").strip()
    if url:
        m = re.fullmatch(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}", url)
        if not m:
            return url
        env_val = os.getenv(m.group(1)) or ""
        if env_val:
            return env_val

    db_url = get_settings().database_url
    if db_url:
        return db_url
    raise RuntimeError("DATABASE_URL is not configured for Alembic migrations.")


if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


# Generates SQL without a live DB connection
def run_migrations_offline() -> None:
    context.configure(
        url=_get_migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(_get_migration_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
