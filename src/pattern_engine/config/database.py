"""Database configuration and connection management."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Get database URL from environment variable, default to SQLite for development
DATABASE_URL = os.getenv('PATTERN_ENGINE_DATABASE_URL', 'sqlite:///pattern_engine.db')

if DATABASE_URL.startswith('sqlite:'):
    # Feedback writes arrive from worker threads
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# One session per thread
db_session = scoped_session(SessionLocal)

Base = declarative_base()

def get_db():
    """Get database session."""
    db = db_session()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Initialize database, creating all tables."""
    # Register the mapped classes before create_all
    from ..pattern_learning import db_models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
