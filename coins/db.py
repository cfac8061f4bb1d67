from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def build_engine(url: str, busy_timeout: Optional[float] = None) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    connect_args: dict = {"check_same_thread": False}  # needed for sqlite + FastAPI
    if busy_timeout is not None:
        connect_args["timeout"] = busy_timeout

    if _is_memory_sqlite(url):
        # One shared connection, otherwise every checkout sees an empty database
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Import so the tables register on Base.metadata
    from . import tables  # noqa: F401

    Base.metadata.create_all(engine)
