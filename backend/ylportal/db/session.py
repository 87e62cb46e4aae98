from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


def make_engine(database_url: str) -> Engine:
    kw: dict = {"future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kw = {"future": True, "connect_args": {"check_same_thread": False}}
    return create_engine(database_url, **kw)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
