"""
Configuration module for the Folio content engine.

Loads configuration from environment variables with sensible defaults.
"""

import os


class Config:
    """Base configuration class."""

    # Flask Settings
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    DEBUG = os.getenv("FLASK_ENV", "production") == "development"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Database Settings
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///./folio.db"  # Store in project root
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Collection Settings
    TITLE_MIN_LENGTH = 3
    TITLE_MAX_LENGTH = 100
    SLUG_MIN_LENGTH = 3
    SLUG_MAX_LENGTH = 150
    DESCRIPTION_MAX_LENGTH = 500
    PASSWORD_MIN_LENGTH = 8
    PASSWORD_MAX_LENGTH = 100
    DEFAULT_CONTENT_PER_PAGE = int(os.getenv("DEFAULT_CONTENT_PER_PAGE", "30"))
    MAX_SLUG_ATTEMPTS = 100

    # Metadata Settings
    ENTITY_NAME_MAX_LENGTH = 255
    PREVIEW_LENGTH = 100  # Characters of a text block used as its preview


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = True
    TESTING = True
    # Use in-memory DB so tests never touch the real data file
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"


def get_config(env: str = None) -> Config:
    """
    Get configuration based on environment.

    Args:
        env: Environment name (development, production, testing)

    Returns:
        Configuration object for the specified environment
    """
    if env is None:
        env = os.getenv("FLASK_ENV", "production")

    config_map = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
    }

    return config_map.get(env, ProductionConfig)()
