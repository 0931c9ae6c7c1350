import os
from dataclasses import replace
from typing import Generator

os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.environ["TEST_DATABASE_URL"])
os.environ.setdefault("CHOOSER_SESSION_SECRET", "test-session-secret-with-enough-length")
os.environ.setdefault("CHOOSER_COOKIE_SECURE", "0")
# Cheap argon2 parameters keep the password tests fast.
os.environ.setdefault("CHOOSER_ARGON2_TIME_COST", "1")
os.environ.setdefault("CHOOSER_ARGON2_MEMORY_COST", "8192")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import database as database_module
from core.settings import ChooserSettings, load_settings
from database import Base
from services.account_store import AccountStore


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    import models  # noqa: F401

    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    original_session_local = database_module.SessionLocal
    database_module.SessionLocal = sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)
    try:
        yield test_engine
    finally:
        database_module.SessionLocal = original_session_local
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db_session: Session) -> AccountStore:
    return AccountStore(db_session, state_ttl_seconds=600)


@pytest.fixture()
def settings() -> ChooserSettings:
    return replace(load_settings(), cookie_secure=False, public_base_url="http://testserver")
