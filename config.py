"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'invoices')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'invoices')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'invoices')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Store timeouts (PostgreSQL only)
    DB_CONNECT_TIMEOUT = int(os.getenv('DB_CONNECT_TIMEOUT', '5'))  # seconds
    DB_STATEMENT_TIMEOUT_MS = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', '10000'))

    # Invoice numbering
    INVOICE_NUMBER_PREFIX = os.getenv('INVOICE_NUMBER_PREFIX', 'INV')
    INVOICE_COUNTER_BACKEND = os.getenv('INVOICE_COUNTER_BACKEND', 'sql')  # sql | redis
    INVOICE_COUNTER_NAME = os.getenv('INVOICE_COUNTER_NAME', 'invoice_number')
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    REDIS_TIMEOUT = float(os.getenv('REDIS_TIMEOUT', '3'))

    # Invoice terms
    INVOICE_DUE_DAYS = int(os.getenv('INVOICE_DUE_DAYS', '30'))

    # Money formatting
    CURRENCY_SYMBOL = os.getenv('CURRENCY_SYMBOL', 'Rs.')
    NUMBER_GROUPING = os.getenv('NUMBER_GROUPING', 'indian')  # indian | western

    # Business Information (for the PDF header/footer)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Made Products')
    BUSINESS_WEBSITE = os.getenv('BUSINESS_WEBSITE', 'www.madeproducts.in')
    BUSINESS_PHONE = os.getenv('BUSINESS_PHONE', '+91 85899 07591')
    BUSINESS_EMAIL = os.getenv('BUSINESS_EMAIL', '')
    INVOICE_LOGO_PATH = os.getenv('INVOICE_LOGO_PATH')
    PDF_PAGE_SIZE = os.getenv('PDF_PAGE_SIZE', 'A4')

    # List endpoint paging
    DEFAULT_PAGE_SIZE = int(os.getenv('DEFAULT_PAGE_SIZE', '10'))
    MAX_PAGE_SIZE = int(os.getenv('MAX_PAGE_SIZE', '100'))


class TestConfig(Config):
    """Configuration used by the test suite (SQLite in memory)."""

    TESTING = True
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    INVOICE_COUNTER_BACKEND = 'sql'
    INVOICE_LOGO_PATH = None
