"""
Application Configuration Classes

Environment-specific settings (Development, Testing, Production) for the Flask
application factory. Values come from environment variables, with a local
.env file loaded through python-dotenv for development.

Configuration groups:
- Flask core: secret key, debug and testing flags
- Authentication: bearer token verification (JWT_*)
- Authorization: organization parameter name used by the resolver
- Audit trail: store backend, MongoDB location, write mode and buffer size
- Logging: level and renderer
"""

import logging
import os
from typing import Dict, List, Optional, Type

from dotenv import load_dotenv

# Load environment variables early
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    """Settings shared by every environment."""

    # Flask Core Configuration
    SECRET_KEY = os.getenv('SECRET_KEY', os.urandom(32).hex())
    APP_NAME = os.getenv('APP_NAME', 'Portal Access Control')
    APP_VERSION = os.getenv('APP_VERSION', '1.0.0')
    DEBUG = False
    TESTING = False
    JSON_SORT_KEYS = False

    # Bearer token verification
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY')
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
    JWT_AUDIENCE = os.getenv('JWT_AUDIENCE') or None
    JWT_LEEWAY = int(os.getenv('JWT_LEEWAY', '30'))

    # Authorization
    AUTHZ_ORGANIZATION_PARAM = os.getenv('AUTHZ_ORGANIZATION_PARAM', 'organizationId')

    # Audit trail
    AUTHZ_AUDIT_STORE = os.getenv('AUTHZ_AUDIT_STORE', 'mongodb')
    AUTHZ_AUDIT_MODE = os.getenv('AUTHZ_AUDIT_MODE', 'sync')
    AUTHZ_AUDIT_BUFFER_SIZE = int(os.getenv('AUTHZ_AUDIT_BUFFER_SIZE', '1000'))
    AUTHZ_AUDIT_FLUSH_INTERVAL = float(os.getenv('AUTHZ_AUDIT_FLUSH_INTERVAL', '0.5'))
    AUTHZ_AUDIT_COLLECTION = os.getenv('AUTHZ_AUDIT_COLLECTION', 'role_access_audits')
    AUTHZ_AUDIT_ENSURE_INDEXES = _env_bool('AUTHZ_AUDIT_ENSURE_INDEXES', 'true')
    MONGODB_URI = os.getenv('MONGODB_URI', 'mongodb://localhost:27017')
    MONGODB_DATABASE = os.getenv('MONGODB_DATABASE', 'portal')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')

    # Metrics
    METRICS_ENABLED = _env_bool('METRICS_ENABLED', 'true')

    @classmethod
    def init_app(cls, app) -> None:
        """Hook for environment-specific application setup."""


class DevelopmentConfig(BaseConfig):
    """Local development: console logs, in-memory audit store unless overridden."""

    DEBUG = True
    AUTHZ_AUDIT_STORE = os.getenv('AUTHZ_AUDIT_STORE', 'memory')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'console')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'development-jwt-secret-change-me-0000')


class TestingConfig(BaseConfig):
    """Automated tests: in-memory store, synchronous audit, fixed secrets."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = 'testing-secret-key-not-for-production-use-000000'
    JWT_SECRET_KEY = 'testing-jwt-secret-not-for-production-use-000000'
    JWT_ALGORITHM = 'HS256'
    JWT_AUDIENCE = None
    JWT_LEEWAY = 0
    AUTHZ_ORGANIZATION_PARAM = 'organizationId'
    AUTHZ_AUDIT_STORE = 'memory'
    AUTHZ_AUDIT_MODE = 'sync'
    AUTHZ_AUDIT_BUFFER_SIZE = 1000
    AUTHZ_AUDIT_ENSURE_INDEXES = False
    LOG_LEVEL = 'WARNING'
    LOG_FORMAT = 'console'
    METRICS_ENABLED = False


class ProductionConfig(BaseConfig):
    """Production: JSON logs, MongoDB audit store, secrets required."""

    DEBUG = False
    TESTING = False
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')

    @classmethod
    def init_app(cls, app) -> None:
        if not os.getenv('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")
        if not os.getenv('JWT_SECRET_KEY'):
            raise ValueError("JWT_SECRET_KEY environment variable must be set in production")
        if app.config.get('AUTHZ_AUDIT_STORE') != 'mongodb':
            app.logger.warning("Production audit trail is not persisted to MongoDB")


# Configuration mapping for environment-based selection
config_map: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,

    # Aliases for convenience
    'dev': DevelopmentConfig,
    'test': TestingConfig,
    'prod': ProductionConfig,
}


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get configuration class for the specified environment.

    Args:
        environment: Target environment name (defaults to FLASK_ENV)

    Raises:
        ValueError: If environment is not supported
    """
    if environment is None:
        environment = os.getenv('FLASK_ENV', 'development')

    environment = environment.lower()

    if environment not in config_map:
        raise ValueError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}"
        )

    config_class = config_map[environment]
    logger.info(
        "Configuration class selected",
        extra={'environment': environment, 'config_class': config_class.__name__}
    )
    return config_class


def validate_configuration(config: BaseConfig) -> List[str]:
    """
    Validate configuration settings and return list of issues.

    Args:
        config: Configuration instance to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    issues = []

    if config.AUTHZ_AUDIT_MODE not in ('sync', 'async'):
        issues.append(f"AUTHZ_AUDIT_MODE must be 'sync' or 'async', got {config.AUTHZ_AUDIT_MODE!r}")

    if config.AUTHZ_AUDIT_STORE not in ('mongodb', 'memory'):
        issues.append(f"AUTHZ_AUDIT_STORE must be 'mongodb' or 'memory', got {config.AUTHZ_AUDIT_STORE!r}")

    if config.AUTHZ_AUDIT_BUFFER_SIZE < 1:
        issues.append("AUTHZ_AUDIT_BUFFER_SIZE must be at least 1")

    if not config.AUTHZ_ORGANIZATION_PARAM:
        issues.append("AUTHZ_ORGANIZATION_PARAM must not be empty")

    if not config.JWT_SECRET_KEY:
        issues.append("JWT_SECRET_KEY is required for bearer token authentication")
    elif len(config.JWT_SECRET_KEY) < 32 and not config.DEBUG:
        issues.append("JWT_SECRET_KEY should be at least 32 characters long")

    if config.LOG_FORMAT not in ('json', 'console'):
        issues.append(f"LOG_FORMAT must be 'json' or 'console', got {config.LOG_FORMAT!r}")

    return issues


def create_app_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Select and validate the configuration class for an environment.

    Raises:
        ValueError: If validation fails outside debug mode
    """
    config_class = get_config(environment)
    issues = validate_configuration(config_class())

    if issues and not config_class.DEBUG:
        raise ValueError(f"Configuration validation failed: {'; '.join(issues)}")
    elif issues:
        logger.warning(
            "Configuration validation warnings (ignored in debug mode)",
            extra={'issues': issues}
        )

    return config_class


__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'get_config',
    'validate_configuration',
    'create_app_config',
    'config_map',
]
