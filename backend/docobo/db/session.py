"""Database session management"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from docobo.models import Base
from docobo.core.config import settings

# Create engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    Base.metadata.create_all(bind=engine)


def ping_db(db) -> bool:
    """Trivial store round-trip used by the health check"""
    db.execute(text("SELECT 1"))
    return True
