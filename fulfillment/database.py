import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from fulfillment import config

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set. Check your .env file.")


def engine_options(url: str, echo: bool = False) -> dict:
    """SQLite needs cross-thread connections (FastAPI runs sync routes in a pool);
    server databases get their connections checked before reuse."""
    options = {"echo": echo}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    return options


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL, echo=config.SQL_ECHO))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()
