from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from loyalty_rules.core.config import settings

IS_SQLITE = settings.database_url.lower().startswith("sqlite")

engine_kwargs: dict[str, object] = {
    # Detect and recover from stale pooled connections.
    "pool_pre_ping": True,
}

if IS_SQLITE:
    # Sync endpoints run in FastAPI's threadpool, so one connection can cross threads.
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    engine_kwargs.update(
        {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": settings.db_pool_timeout_seconds,
            "pool_recycle": settings.db_pool_recycle_seconds,
        }
    )

engine = create_engine(settings.database_url, **engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
