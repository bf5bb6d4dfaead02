# backend/config.py
import os

from dotenv import load_dotenv

DEFAULT_SECRET_KEY = 'devsecret'
DEFAULT_DATABASE_URL = 'sqlite:///storefront.db'


class ConfigError(RuntimeError):
    pass


def _int_env(name, default):
    value = os.getenv(name)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f'{name} must be an integer, got {value!r}')


def is_production():
    return (os.getenv('APP_ENV') or os.getenv('FLASK_ENV') or '').lower() == 'production'


def validate_env():
    """Refuse to run a production instance on development defaults."""
    if not is_production():
        return
    missing = [name for name in ('DATABASE_URL', 'SECRET_KEY') if not os.getenv(name)]
    if missing:
        raise ConfigError('Missing required environment variables: ' + ', '.join(missing))
    if os.getenv('SECRET_KEY') == DEFAULT_SECRET_KEY:
        raise ConfigError('SECRET_KEY must be changed in production')


def load_config():
    load_dotenv()
    validate_env()
    return {
        'SQLALCHEMY_DATABASE_URI': os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': os.getenv('SECRET_KEY', DEFAULT_SECRET_KEY),
        'SESSION_COOKIE_HTTPONLY': True,
        'SESSION_COOKIE_SAMESITE': 'Lax',
        'SESSION_COOKIE_SECURE': is_production(),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO').upper(),
        'LOG_DIR': os.getenv('LOG_DIR') or None,
        'LOGIN_MAX_ATTEMPTS': _int_env('LOGIN_MAX_ATTEMPTS', 5),
        'LOGIN_LOCKOUT_MINUTES': _int_env('LOGIN_LOCKOUT_MINUTES', 15),
        'LOGIN_ATTEMPTS_REDIS_URL': os.getenv('LOGIN_ATTEMPTS_REDIS_URL') or None,
        'PRODUCTS_PER_PAGE': _int_env('PRODUCTS_PER_PAGE', 12),
        'ORDERS_PER_PAGE': _int_env('ORDERS_PER_PAGE', 10),
        'ADMIN_ORDERS_PER_PAGE': _int_env('ADMIN_ORDERS_PER_PAGE', 20),
        'RECENT_ORDERS_LIMIT': _int_env('RECENT_ORDERS_LIMIT', 5),
    }
