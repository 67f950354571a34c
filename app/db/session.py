"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
from contextlib import contextmanager

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and run startup tasks.

    Schema is managed by Alembic migrations, NOT create_all().
    Run `alembic upgrade head` before first startup.

    Startup order:
    1. Run preflight check (validates DB connectivity)
    2. Verify schema exists (tables were created by Alembic)
    3. Seed demo data ONLY if ENABLE_MOCK_DATA=true (never in production)
    """
    from sqlalchemy import inspect, text

    from app.db.preflight import run_db_preflight
    run_db_preflight()

    from app.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ['companies', 'users', 'company_users', 'pir_requests']

    missing = [t for t in required_tables if t not in existing_tables]
    if missing:
        logger.error(f"Database schema missing required tables: {missing}")
        logger.error("Run the Alembic migrations: alembic upgrade head")

        if settings.APP_ENV == "development":
            logger.warning("APP_ENV=development: auto-creating tables (NOT for production!)")
            Base.metadata.create_all(bind=engine)
        else:
            return
    else:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    if 'alembic_version' in existing_tables:
        try:
            with engine.connect() as conn:
                version = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
                logger.info(f"Alembic migration version: {version}")
        except Exception as e:
            logger.warning(f"Could not read migration version: {e}")

    if settings.ENABLE_MOCK_DATA:
        from app.db.seed import seed_demo_data
        logger.info("ENABLE_MOCK_DATA=true: seeding demo data")
        db = SessionLocal()
        try:
            seed_demo_data(db)
        finally:
            db.close()
