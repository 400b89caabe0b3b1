"""
Application factory for the Folio content engine.

The engine runs inside a Flask application context so that the transport
layer hosting it and the engine share one Flask-SQLAlchemy session.
"""

import logging

from flask import Flask

from config import get_config
from models import db


def configure_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(env: str = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        env: Environment name (development, production, testing)

    Returns:
        Configured Flask application with the database bound
    """
    app = Flask(__name__)
    app.config.from_object(get_config(env))

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))
    db.init_app(app)

    app.logger.debug(f"Folio engine configured with {app.config['SQLALCHEMY_DATABASE_URI']}")
    return app
