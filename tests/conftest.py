import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.pattern_engine.config.config_manager import EngineSettings
from src.pattern_engine.config.database import Base
from src.pattern_engine.engine import DetectionEngine
from src.pattern_engine.pattern_learning import db_models  # noqa: F401
from src.pattern_engine.pattern_learning.db_service import PatternDBService
from src.pattern_engine.pattern_learning.pattern_store import PatternStore
from src.pattern_engine.pattern_learning.refined_view import RefinedPatternView
from src.pattern_engine.pattern_learning.models import PatternCategory


@pytest.fixture
def db_engine(tmp_path):
    """Create a fresh SQLite database for each test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()

@pytest.fixture
def db_session(db_engine):
    """Thread-local session bound to the test database."""
    session_factory = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    Session = scoped_session(session_factory)
    yield Session
    Session.remove()

@pytest.fixture
def settings():
    """Default engine settings."""
    return EngineSettings()

@pytest.fixture
def pattern_store(db_session):
    """Create pattern store instance."""
    return PatternStore(PatternDBService(db_session))

@pytest.fixture
def engine(pattern_store, settings):
    """Detection engine on the test database."""
    return DetectionEngine(pattern_store=pattern_store, settings=settings)

@pytest.fixture
def second_engine(db_engine, settings):
    """Engine with its own store and sessions on the same database, like another worker."""
    Session = scoped_session(sessionmaker(bind=db_engine, autocommit=False, autoflush=False))
    yield DetectionEngine(pattern_store=PatternStore(PatternDBService(Session)), settings=settings)
    Session.remove()

@pytest.fixture
def ssn_pattern(engine):
    """SSN pattern learned from one example."""
    return engine.create_pattern_from_examples("SSN", ["123-45-6789"], PatternCategory.PII)

@pytest.fixture
def ssn_view():
    """Refined view of a hand-written SSN pattern."""
    return RefinedPatternView(
        pattern_id="11111111-1111-4111-8111-111111111111",
        label="SSN",
        category=PatternCategory.PII,
        expression=r"\b\d{3}-\d{2}-\d{4}\b",
    )

@pytest.fixture
def clue_view():
    """Refined view of a context clue pattern."""
    return RefinedPatternView(
        pattern_id="22222222-2222-4222-8222-222222222222",
        label="SSN Label",
        category=PatternCategory.PII,
        expression=r"(?i)\bSocial Security:",
        is_context_clue=True,
    )
