from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from parkops.config import Settings, settings


class Base(DeclarativeBase):
    pass


def build_engine(config: Settings) -> Engine:
    url = config.database_url
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=config.db_echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        echo=config.db_echo,
        pool_pre_ping=True,
        pool_size=config.db_pool_size,
        pool_timeout=config.db_pool_timeout,
    )


engine = build_engine(settings)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@contextmanager
def transaction(session_factory: sessionmaker) -> Iterator[Session]:
    """Open a session with a transaction that commits on success.

    Any exception rolls the transaction back. The session is closed, and its
    pooled connection released, on every exit path.
    """
    with session_factory() as session:
        with session.begin():
            yield session
