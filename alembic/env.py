import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from app import create_app
from models import db

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv()

# DATABASE_URL wins over the app's configured URI
app = create_app(os.getenv("FLASK_ENV") or "production")
with app.app_context():
    database_url = os.getenv("DATABASE_URL") or app.config["SQLALCHEMY_DATABASE_URI"]
target_metadata = db.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=database_url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(database_url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
