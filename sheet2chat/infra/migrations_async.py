# sheet2chat/infra/migrations_async.py
"""
Startup schema migrations for the config store.

Files in ``sheet2chat/infra/sql`` run once each, in filename order, inside a
single transaction. A transaction-scoped advisory lock keeps two replicas
booting together from applying the same file twice.
"""
from __future__ import annotations

from pathlib import Path

from sheet2chat.infra.db_async import db_conn
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

# Arbitrary constant shared by every replica
_MIGRATION_LOCK_KEY = 5_202_611

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version    text PRIMARY KEY,
  applied_at timestamptz NOT NULL DEFAULT now()
)
"""


def pending_files(applied: set[str], sql_dir: Path = SQL_DIR) -> list[Path]:
    return [path for path in sorted(sql_dir.glob("*.sql")) if path.name not in applied]


async def apply_migrations() -> list[str]:
    """Run outstanding migrations and return the file names applied now."""
    async with db_conn(autocommit=False) as conn:
        await conn.execute("SELECT pg_advisory_xact_lock($1)", _MIGRATION_LOCK_KEY)
        await conn.execute(_LEDGER_DDL)

        applied = {record["version"] for record in await conn.fetch("SELECT version FROM schema_migrations")}
        done: list[str] = []
        for path in pending_files(applied):
            logger.info(f"Applying migration {path.name}")
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations (version) VALUES ($1)", path.name)
            done.append(path.name)

    logger.info(f"Migrations up to date ({len(done)} applied)")
    return done
