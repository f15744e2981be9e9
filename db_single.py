"""
Database management for single database multi-tenant system
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config import Config
from models import Base, Tenant
import logging

logger = logging.getLogger(__name__)

# Global engine and session factory
ENGINE = None
SessionLocal = None


def init_database(config=None):
    """Initialize database engine and session factory"""
    global ENGINE, SessionLocal

    if config is None:
        config = Config()
    database_uri = config.get_database_uri()

    if database_uri.startswith('sqlite'):
        # A single shared connection keeps in-memory databases alive across sessions
        ENGINE = create_engine(
            database_uri,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    else:
        ENGINE = create_engine(
            database_uri,
            **config.SQLALCHEMY_ENGINE_OPTIONS
        )

    SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False)

    logger.info(f"Database initialized: {ENGINE.url.render_as_string(hide_password=True)}")
    return ENGINE, SessionLocal


def create_all_tables():
    """Create every table registered on Base.metadata"""
    # Model modules register their tables on import
    import chapter_models  # noqa: F401
    import examination_models  # noqa: F401
    import risk_alert_models  # noqa: F401

    if ENGINE is None:
        init_database()
    Base.metadata.create_all(ENGINE)


def get_session():
    """Get a database session"""
    if SessionLocal is None:
        init_database()
    return SessionLocal()


def create_school(slug: str, name: str) -> tuple[bool, str]:
    """
    Create a new school (tenant)

    Args:
        slug: URL-friendly identifier (e.g., 'xyz')
        name: Full school name (e.g., 'XYZ Public School')

    Returns:
        tuple: (success: bool, message: str)
    """
    session = get_session()
    try:
        existing = session.query(Tenant).filter_by(slug=slug).first()
        if existing:
            return False, f"School with slug '{slug}' already exists"

        school = Tenant(slug=slug, name=name, is_active=True)
        session.add(school)
        session.commit()

        logger.info(f"Created school: {name} ({slug})")
        return True, f"School '{name}' created successfully with slug '{slug}'"

    except Exception as e:
        session.rollback()
        logger.error(f"Failed to create school: {e}")
        return False, f"Error creating school: {str(e)}"
    finally:
        session.close()


def list_schools() -> list:
    """List all schools/tenants"""
    session = get_session()
    try:
        schools = session.query(Tenant).filter_by(is_active=True).order_by(Tenant.name).all()
        session.expunge_all()
        return schools
    finally:
        session.close()
