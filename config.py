"""
Configuration for the Multi-Tenant Examination Workflow Service
"""

import os
from urllib.parse import quote_plus
import dotenv
dotenv.load_dotenv()  # Load environment variables from .env file


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration for single database multi-tenancy"""

    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'supersecretkey'
    TESTING = False

    # Database settings
    MYSQL_HOST = os.environ.get('DB_HOST', 'localhost')
    MYSQL_PORT = int(os.environ.get('DB_PORT', 3306))
    MYSQL_USERNAME = os.environ.get('DB_USER', 'examflow')
    MYSQL_PASSWORD = os.environ.get('DB_PASS', '')
    MYSQL_DATABASE = os.environ.get('DB_NAME', 'examflow')
    MYSQL_CHARSET = 'utf8mb4'

    # SQLAlchemy settings
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_recycle': 280,
        'pool_pre_ping': True,
    }

    # Risk alert monitor
    RISK_APPROVAL_SLA_HOURS = int(os.environ.get('RISK_APPROVAL_SLA_HOURS', 48))
    RISK_REVIEW_SLA_HOURS = int(os.environ.get('RISK_REVIEW_SLA_HOURS', 72))
    RISK_DENIAL_THRESHOLD = int(os.environ.get('RISK_DENIAL_THRESHOLD', 5))
    RISK_DENIAL_WINDOW_MINUTES = int(os.environ.get('RISK_DENIAL_WINDOW_MINUTES', 60))
    ENABLE_RISK_MONITOR = _env_flag('ENABLE_RISK_MONITOR')
    RISK_MONITOR_INTERVAL = int(os.environ.get('RISK_MONITOR_INTERVAL', 300))
    EVALUATE_RISKS_ON_MUTATION = _env_flag('EVALUATE_RISKS_ON_MUTATION', True)

    def _encoded_password(self) -> str:
        """Percent-encode special characters for URL usage."""
        return quote_plus(self.MYSQL_PASSWORD) if self.MYSQL_PASSWORD else ''

    def get_database_uri(self) -> str:
        """Get single database URI for all tenants."""
        if os.environ.get('DATABASE_URL'):
            return os.environ['DATABASE_URL']

        user = self.MYSQL_USERNAME
        pwd = self._encoded_password()
        host = self.MYSQL_HOST
        port = self.MYSQL_PORT
        database = self.MYSQL_DATABASE

        if pwd:
            return f"mysql+pymysql://{user}:{pwd}@{host}:{port}/{database}?charset={self.MYSQL_CHARSET}"
        return f"mysql+pymysql://{user}@{host}:{port}/{database}?charset={self.MYSQL_CHARSET}"


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    ENABLE_RISK_MONITOR = False
    EVALUATE_RISKS_ON_MUTATION = False

    # Use in-memory SQLite for testing
    def get_database_uri(self) -> str:
        return 'sqlite:///:memory:'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
