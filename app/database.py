"""
Database engine + session factory.

Always initializes — defaults to SQLite for local dev, Postgres in production.
Sessions do not expire on commit, so records handed back to callers stay
readable after the session is closed.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from app.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Heroku-style URLs use postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

# SQLite needs different engine kwargs than Postgres
if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


def import_models():
    """Import every model module so Base.metadata knows about all tables."""
    import importlib
    for name in (
        'app.models.pipeline',
        'app.models.lead',
        'app.models.entry',
        'app.models.automation',
        'app.models.appointment',
        'app.models.notification',
    ):
        importlib.import_module(name)
