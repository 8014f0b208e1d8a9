"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'now24')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'now24')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'now24')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    SQLALCHEMY_POOL_SIZE = int(os.getenv('SQLALCHEMY_POOL_SIZE', '10'))
    SQLALCHEMY_MAX_OVERFLOW = int(os.getenv('SQLALCHEMY_MAX_OVERFLOW', '20'))

    # Checkout
    DELIVERY_FEE_CENTS = int(os.getenv('DELIVERY_FEE_CENTS', '900'))  # R$ 9,00
    CART_TTL_DAYS = int(os.getenv('CART_TTL_DAYS', '7'))
    ORDER_CREATE_MAX_ATTEMPTS = int(os.getenv('ORDER_CREATE_MAX_ATTEMPTS', '3'))

    # Kitchen / courier integration
    FULFILLMENT_API_KEY = os.getenv('FULFILLMENT_API_KEY')

    # Mercado Pago
    MP_ACCESS_TOKEN = os.getenv('MP_ACCESS_TOKEN')
    MP_WEBHOOK_SECRET = os.getenv('MP_WEBHOOK_SECRET')
    MP_NOTIFICATION_URL = os.getenv('MP_NOTIFICATION_URL')
    MP_TIMEOUT_SECONDS = float(os.getenv('MP_TIMEOUT_SECONDS', '10'))
    MP_CURRENCY = os.getenv('MP_CURRENCY', 'BRL')

    # Notifications: 'log' or 'mail'
    NOTIFIER_BACKEND = os.getenv('NOTIFIER_BACKEND', 'log')

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = False


class TestingConfig(Config):
    """In-memory SQLite, no mail, fixed secrets."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    MAIL_SUPPRESS_SEND = True
    NOTIFIER_BACKEND = 'log'
    FULFILLMENT_API_KEY = 'test-fulfillment-key'
    MP_ACCESS_TOKEN = None
    MP_WEBHOOK_SECRET = None
    MP_NOTIFICATION_URL = None
    DELIVERY_FEE_CENTS = 900
    CART_TTL_DAYS = 7
    ORDER_CREATE_MAX_ATTEMPTS = 3
