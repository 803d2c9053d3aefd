from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import Engine, create_engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from onetime.config import DatabaseSettings


class Base(DeclarativeBase):
    pass


def build_engine(settings: DatabaseSettings) -> Engine:
    """Create the engine with store calls bounded by store_timeout_seconds."""
    url = make_url(settings.database_url)
    timeout = settings.store_timeout_seconds

    if url.get_backend_name() == "sqlite":
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )

    connect_args = {}
    if url.get_backend_name() == "postgresql":
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args=connect_args,
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    """Dependency for FastAPI endpoints to get a database session."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
