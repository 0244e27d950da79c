"""Database configuration and session management"""

from typing import Any, Dict, List

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from choosemypower.config import settings

def engine_options(database_url: str) -> Dict[str, Any]:
    """create_engine keyword arguments for a database URL"""
    options: Dict[str, Any] = {"pool_pre_ping": True, "echo": settings.debug}
    if database_url.startswith("sqlite"):
        # SQLite (tests, local runs) shares one connection across threads
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    return options


# Database engine; server databases keep the default QueuePool so each session gets its own connection
engine = create_engine(settings.database_url, **engine_options(settings.database_url))

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def upsert_statement(db: Session, model, values: Dict[str, Any], conflict_columns: List[str], update_columns: List[str]):
    """INSERT ... ON CONFLICT DO UPDATE for PostgreSQL and SQLite sessions"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    stmt = insert(model.__table__).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
