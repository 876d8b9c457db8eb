from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from stockflow.core.config import settings

engine_kwargs: dict[str, object] = {
    # Detect and recover from stale pooled connections.
    "pool_pre_ping": True,
}

is_sqlite = settings.database_url.lower().startswith("sqlite")

if not is_sqlite:
    # Tune SQLAlchemy pool for networked databases (e.g., Postgres).
    engine_kwargs.update(
        {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": settings.db_pool_timeout_seconds,
            "pool_recycle": settings.db_pool_recycle_seconds,
        }
    )
    if settings.db_isolation_level:
        engine_kwargs["isolation_level"] = settings.db_isolation_level.upper()
else:
    engine_kwargs["connect_args"] = {
        "check_same_thread": False,
        "timeout": settings.db_pool_timeout_seconds,
    }

engine = create_engine(settings.database_url, **engine_kwargs)


if engine.dialect.name == "postgresql" and settings.db_statement_timeout_ms:

    @event.listens_for(engine, "connect")
    def _set_statement_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET statement_timeout = {int(settings.db_statement_timeout_ms)}")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
