"""
Database Initialization and Integrity Checker
Creates the database, any missing tables and the portal super admin
"""

import os
import sys
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import OperationalError, ProgrammingError
from datetime import datetime
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Import all models to register them with Base.metadata
from models import Base, User
import chapter_models  # noqa: F401
import examination_models  # noqa: F401
import risk_alert_models  # noqa: F401


def get_database_url():
    """Get database URL from environment or config"""
    from config import Config
    return Config().get_database_uri()


def create_database_if_not_exists(db_url):
    """Create the MySQL database if it doesn't exist"""
    if 'mysql' not in db_url:
        return

    url_obj = make_url(db_url)
    db_name = url_obj.database
    temp_engine = create_engine(url_obj.set(database=None))

    try:
        with temp_engine.connect() as conn:
            conn.execute(text(f'CREATE DATABASE IF NOT EXISTS `{db_name}`'))
            print(f"Database ready: {db_name}")
    except (OperationalError, ProgrammingError) as e:
        print(f"Warning: Could not create database: {e}")
    finally:
        temp_engine.dispose()


def create_missing_tables(engine):
    """Create any tables registered on Base.metadata that the database lacks"""
    existing_tables = set(inspect(engine).get_table_names())
    missing_tables = set(Base.metadata.tables.keys()) - existing_tables

    if not missing_tables:
        print(" All tables exist")
        return []

    print(f"\n Creating {len(missing_tables)} missing tables:")
    for table in sorted(missing_tables):
        print(f"  - {table}")

    # create_all orders tables by foreign key dependency
    Base.metadata.create_all(engine, tables=[Base.metadata.tables[name] for name in missing_tables])
    return sorted(missing_tables)


def create_default_admin_user(engine):
    """Create the portal super admin if no users exist"""
    Session = sessionmaker(bind=engine)
    session = Session()

    try:
        if session.query(User).count() == 0:
            admin = User(
                username='admin',
                email='admin@examflow.local',
                role='super_admin',
                first_name='Portal',
                last_name='Admin',
                is_active=True
            )
            admin.set_password(os.environ.get('DEFAULT_ADMIN_PASSWORD', 'admin123'))

            session.add(admin)
            session.commit()

            print("\nCreated default admin user:")
            print("  Username: admin")
            print("  IMPORTANT: Change this password immediately in production!")
            return True
        return False
    except Exception as e:
        session.rollback()
        print(f"Warning: Could not create default admin user: {e}")
        return False
    finally:
        session.close()


def initialize_database(verbose=True):
    """
    Create and verify the database
    Returns: (success: bool, created_tables: list)
    """
    if verbose:
        print("\n" + "="*60)
        print("DATABASE INITIALIZATION & INTEGRITY CHECK")
        print("="*60)
        print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        db_url = get_database_url()
        if verbose:
            print(f"\nDatabase URL: {make_url(db_url).render_as_string(hide_password=True)}")

        create_database_if_not_exists(db_url)
        engine = create_engine(db_url, echo=False)

        with engine.connect():
            if verbose:
                print("Database connection successful")

        created_tables = create_missing_tables(engine)

        if 'users' in created_tables:
            create_default_admin_user(engine)

        if verbose:
            print("\n" + "="*60)
            if created_tables:
                print(f"[OK] Created {len(created_tables)} new tables")
            else:
                print("[OK] Database integrity verified - all tables present")
            print("="*60 + "\n")

        engine.dispose()
        return True, created_tables

    except Exception as e:
        print(f"\n[ERROR] Database initialization failed: {e}")
        import traceback
        traceback.print_exc()
        return False, []


def run_on_startup():
    """Wrapper function to run on application startup"""
    success, created_tables = initialize_database(verbose=True)

    if not success:
        print("\n[WARNING] Database initialization failed!")
        print("Please check the database configuration and try again.\n")
        return False

    return True


if __name__ == '__main__':
    success = run_on_startup()
    sys.exit(0 if success else 1)
