import os

os.environ.setdefault("TESTING", "true")

import datetime
import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from kitroom.core.db import Base, make_engine
from kitroom.core import models
from kitroom.core.catalog import Catalog
from kitroom.core.models import User, LoanType

# A Monday, so the following Sunday is easy to reach
TODAY = datetime.date(2025, 1, 6)
TOMORROW = TODAY + datetime.timedelta(days=1)


@pytest.fixture
def engine():
    engine = make_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()

@pytest.fixture
def db_session(engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def file_engine(tmp_path):
    """A file-backed database, so separate sessions see separate transactions."""
    engine = make_engine(f"sqlite:///{tmp_path / 'kitroom.db'}", echo=False)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


def make_user(db, email="student@example.edu", name="Ada", surname="Lovelace",
              role="user", course=None):
    user = User(email=email, name=name, surname=surname, role=role, course=course)
    db.add(user)
    db.commit()
    return user

def make_item(db, name="Tripod", loan_type=LoanType.EXTERNAL_ONLY, units=1, courses=()):
    return Catalog.create_item(db, name, loan_type, total_units=units, courses=courses)

def unit_of(db, item, index=0):
    """The item's units are ordered by code; returns a freshly loaded one."""
    unit = db.execute(
        select(models.Unit).where(models.Unit.item_id == item.id).order_by(models.Unit.code)
    ).scalars().all()[index]
    db.refresh(unit)
    return unit


@pytest.fixture
def user(db_session):
    return make_user(db_session)

@pytest.fixture
def admin(db_session):
    return make_user(db_session, email="desk@example.edu", name="Desk", surname="Admin",
                     role="admin")
