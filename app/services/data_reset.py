"""
Destructive data reset for development and staging databases.

Every application table is emptied. The operation refuses to run in
production and requires the typed confirmation code CLEAR-<ENV>-<YEAR>.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

RESETTABLE_ENVIRONMENTS = ("development", "staging")

# Schema bookkeeping that survives a reset.
PRESERVED_TABLES = frozenset({"alembic_version"})


@dataclass
class ResetResult:
    success: bool
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


def expected_confirmation_code(env: Optional[str] = None, year: Optional[int] = None) -> str:
    env = env or settings.APP_ENV
    year = year or datetime.now().year
    return f"CLEAR-{env.upper()}-{year}"


def list_public_tables(db: Session) -> List[str]:
    bind = db.get_bind()
    schema = "public" if bind.dialect.name == "postgresql" else None
    return [
        t for t in inspect(db.connection()).get_table_names(schema=schema)
        if t not in PRESERVED_TABLES
    ]


def _disable_constraints(db: Session, dialect: str):
    if dialect == "postgresql":
        db.execute(text("SET session_replication_role = replica"))
    elif dialect == "sqlite":
        db.execute(text("PRAGMA foreign_keys = OFF"))


def _enable_constraints(db: Session, dialect: str):
    if dialect == "postgresql":
        db.execute(text("SET session_replication_role = DEFAULT"))
    elif dialect == "sqlite":
        db.execute(text("PRAGMA foreign_keys = ON"))


def _truncate(db: Session, dialect: str, table: str):
    quoted = db.get_bind().dialect.identifier_preparer.quote(table)
    if dialect == "postgresql":
        db.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
    else:
        db.execute(text(f"DELETE FROM {quoted}"))


def clear_all_data(db: Session, confirmation_code: str,
                   env: Optional[str] = None, year: Optional[int] = None) -> ResetResult:
    """
    Empty every application table.

    Returns success=False without touching the database outside development
    and staging, or when the confirmation code does not match exactly. A
    table that fails to clear is logged and the rest are still cleared.
    """
    env = env or settings.APP_ENV
    if env not in RESETTABLE_ENVIRONMENTS:
        logger.warning(f"Refused data reset in {env} environment", extra={"action": "data_reset"})
        return ResetResult(
            success=False,
            message="Database clearing is only allowed in development and staging environments",
        )

    expected = expected_confirmation_code(env, year)
    if confirmation_code != expected:
        return ResetResult(success=False, message=f"Invalid confirmation code. Expected: {expected}")

    dialect = db.get_bind().dialect.name
    try:
        tables = list_public_tables(db)
        if not tables:
            raise LookupError("No tables found")

        _disable_constraints(db, dialect)
        failed = []
        for table in tables:
            try:
                with db.begin_nested():
                    _truncate(db, dialect, table)
            except SQLAlchemyError as e:
                failed.append(table)
                logger.error(f"Error clearing table {table}: {e}")
        _enable_constraints(db, dialect)
        db.commit()
    except (LookupError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"Error clearing database: {e}", extra={"action": "data_reset"})
        return ResetResult(success=False, message=f"Error clearing database: {e}")

    logger.warning(
        f"Cleared {len(tables) - len(failed)} tables in the {env} environment",
        extra={"action": "data_reset"},
    )
    message = f"Successfully cleared {len(tables)} tables in the {env} environment"
    if failed:
        message = (f"Cleared {len(tables) - len(failed)} of {len(tables)} tables in the {env} "
                   f"environment; failed: {', '.join(failed)}")
    return ResetResult(success=True, message=message)
