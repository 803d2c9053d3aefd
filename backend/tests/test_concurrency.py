"""Concurrent reveals must never hand out more than max_views plaintexts."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from onetime.database import Base
from onetime.errors import SecretNotFound
from onetime.models.secret import Secret, SecretMetadata, SecretState
from onetime.services.secret_service import SecretLifecycle
from onetime.services.secret_store import SecretStore


@pytest.fixture
def file_session_factory(tmp_path):
    """A file-backed database so every thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


def race_reveals(session_factory, crypto, key, attempts):
    barrier = threading.Barrier(attempts)

    def attempt():
        db = session_factory()
        try:
            lifecycle = SecretLifecycle(SecretStore(db), crypto, site_url="https://x.test")
            barrier.wait()
            return lifecycle.reveal(key).secret
        except SecretNotFound as e:
            return e
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        return list(pool.map(lambda _: attempt(), range(attempts)))


@pytest.mark.parametrize(("max_views", "extra"), [(1, 1), (1, 4), (3, 2), (5, 5)])
def test_at_most_max_views_reveals(file_session_factory, crypto, max_views, extra):
    db = file_session_factory()
    try:
        created = SecretLifecycle(SecretStore(db), crypto, site_url="https://x.test").create(
            "only once", max_views=max_views
        )
    finally:
        db.close()

    outcomes = race_reveals(file_session_factory, crypto, created.key, max_views + extra)

    successes = [o for o in outcomes if o == "only once"]
    failures = [o for o in outcomes if isinstance(o, SecretNotFound)]
    assert len(successes) == max_views
    assert len(failures) == extra

    db = file_session_factory()
    try:
        assert db.scalars(select(Secret).where(Secret.key == created.key)).first() is None
        metadata = db.scalars(
            select(SecretMetadata).where(SecretMetadata.secret_key == created.key)
        ).one()
        assert metadata.state == SecretState.DESTROYED
    finally:
        db.close()
