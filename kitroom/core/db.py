import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from kitroom.configs import DB_URI, DEBUG

logger = logging.getLogger(__name__)


def make_engine(uri=DB_URI, echo=DEBUG):
    """Builds an engine; in-memory SQLite shares one connection across threads."""
    engine_kwargs = {'echo': echo}
    if uri.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in uri:
            engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['client_encoding'] = 'utf8'
        engine_kwargs['pool_pre_ping'] = True
    return create_engine(uri, **engine_kwargs)


engine = make_engine()
session = scoped_session(sessionmaker(
    bind=engine, autocommit=False, autoflush=False))


class KitroomBase:
    @classmethod
    def get(cls, db, pk):
        return db.get(cls, pk)

    @classmethod
    def get_many(cls, db, offset=None, limit=None):
        return db.query(cls).offset(offset).limit(limit).all()

Base = declarative_base(cls=KitroomBase)


@contextmanager
def atomic(db):
    """Commits the work done inside the block, or rolls all of it back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    db = session()
    try:
        yield db
    finally:
        session.remove()


def init(bind=None):
    try:
        # models must be imported so their tables register on Base
        from kitroom.core import models  # noqa: F401
        Base.metadata.create_all(bind=bind or engine)
        return session
    except Exception as e:
        logger.warning(f"[WARNING] Database initialization failed: {e}")
