from typing import Tuple
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def make_engine(database_url: str) -> Tuple[Engine, sessionmaker]:
    if database_url.startswith("postgres://"):
        # allow Heroku-style URLs
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    kw = dict(pool_pre_ping=True)
    if database_url.startswith("sqlite"):
        kw.update(connect_args={"check_same_thread": False})
    else:
        # Database connection with pooling
        kw.update(
            pool_size=5,  # Max connections in pool
            max_overflow=10,  # Extra connections if needed
            pool_timeout=30,  # Wait time for a connection
            pool_recycle=1800,  # Recycle connections every 30 minutes
        )

    engine = create_engine(database_url, **kw)

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA busy_timeout=5000;")
            cur.close()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine, SessionLocal
