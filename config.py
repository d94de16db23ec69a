# SIGNEA Event Management Configuration

import os
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'signea-secret-key-change-me'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'signea.db')

    # Session Configuration
    SESSION_INACTIVITY_TIMEOUT = timedelta(minutes=60)
    SESSION_ACTIVITY_DEBOUNCE_SECONDS = int(os.environ.get('SESSION_ACTIVITY_DEBOUNCE_SECONDS') or 60)
    SESSION_ACTIVITY_SETTLE_SECONDS = 1.0
    SESSION_CHECK_INTERVAL_SECONDS = 30
    PROVIDER_TOKEN_TTL = timedelta(hours=1)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # PIX Configuration
    PIX_PAYEE_KEY = os.environ.get('PIX_PAYEE_KEY') or ''
    PIX_MERCHANT_NAME = os.environ.get('PIX_MERCHANT_NAME') or 'IFFarroupilha'
    PIX_MERCHANT_CITY = os.environ.get('PIX_MERCHANT_CITY') or 'Santa Maria'
    PIX_QR_WIDTH = 300

    # Geolocation Configuration
    GEOLOCATION_TIMEOUT_MS = 10000
    DEFAULT_VALIDATION_RADIUS_METERS = 100

    # Access Configuration
    INSTITUTIONAL_EMAIL_DOMAINS = _env_list(
        'INSTITUTIONAL_EMAIL_DOMAINS', ['@aluno.iffar.edu.br', '@iffarroupilha.edu.br']
    )
    FULL_ACCESS_EMAILS = _env_list('FULL_ACCESS_EMAILS', [])

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_FILE = BASE_DIR / 'logs' / 'signea.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        for directory in (cls.DATABASE_PATH.parent, cls.LOG_FILE.parent):
            directory.mkdir(parents=True, exist_ok=True)

        app.config.update({
            key: getattr(cls, key) for key in dir(cls) if key.isupper()
        })
        app.config['PERMANENT_SESSION_LIFETIME'] = cls.SESSION_INACTIVITY_TIMEOUT


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    DATABASE_PATH = BASE_DIR / 'database' / 'signea_dev.db'

    # Placeholder key so the PIX endpoint works locally
    PIX_PAYEE_KEY = os.environ.get('PIX_PAYEE_KEY') or 'financeiro@iffarroupilha.edu.br'

    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    DATABASE_PATH = BASE_DIR / 'database' / 'signea_test.db'

    PIX_PAYEE_KEY = 'chave@example.com'

    # Refresh on every activity event during tests
    SESSION_ACTIVITY_DEBOUNCE_SECONDS = 0
    SESSION_ACTIVITY_SETTLE_SECONDS = 0.01


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'signea_prod.db')

    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        import logging
        from logging.handlers import RotatingFileHandler

        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(cls.LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('SIGNEA startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on environment variable"""
    return config.get(os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)


def validate_config(config_class=Config):
    """Validate configuration settings"""
    errors = []

    if not config_class.PIX_PAYEE_KEY:
        errors.append("PIX_PAYEE_KEY is required to issue PIX charges")

    if config_class.SESSION_INACTIVITY_TIMEOUT <= timedelta(0):
        errors.append("SESSION_INACTIVITY_TIMEOUT must be positive")

    if config_class.DEFAULT_VALIDATION_RADIUS_METERS <= 0:
        errors.append("DEFAULT_VALIDATION_RADIUS_METERS must be positive")

    if not config_class.INSTITUTIONAL_EMAIL_DOMAINS:
        errors.append("At least one institutional e-mail domain is required")

    if config_class.SECRET_KEY == Config.SECRET_KEY and config_class is ProductionConfig:
        errors.append("SECRET_KEY must be set in production")

    return errors


def init_config(app, config_name=None):
    """Initialize application with configuration"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    config_class = config.get(config_name, DevelopmentConfig)
    config_class.init_app(app)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
