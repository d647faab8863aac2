"""
Configuration Package

Environment-specific configuration classes loaded from environment variables
and an optional .env file.
"""

from src.config.settings import (
    BaseConfig,
    DevelopmentConfig,
    ProductionConfig,
    TestingConfig,
    config_map,
    create_app_config,
    get_config,
    validate_configuration,
)

__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'config_map',
    'get_config',
    'validate_configuration',
    'create_app_config',
]
