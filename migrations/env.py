from logging.config import fileConfig
from alembic import context
import os
import sys

# корень репозитория в sys.path, чтобы импортировались app/extensions/models
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from app import create_app            # noqa: E402
from extensions import db             # noqa: E402
import models  # noqa: E402,F401  таблицы должны попасть в metadata до autogenerate

# миграции гоняем без сидинга пользователей: таблиц ещё может не быть
app = create_app(os.getenv("FLASK_CONFIG", "prod"))
app.app_context().push()

engine_url = str(db.engine.url)
if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", engine_url.replace("%", "%%"))

target_metadata = db.metadata

def _configure_kwargs(dialect_name: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        # ALTER через пересоздание таблицы нужен только SQLite
        "render_as_batch": dialect_name == "sqlite",
    }

def run_migrations_offline():
    """SQL-скрипт без подключения к БД."""
    url = config.get_main_option("sqlalchemy.url") or engine_url
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(db.engine.dialect.name),
    )
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online():
    """Применение миграций к БД из SQLALCHEMY_DATABASE_URI."""
    with db.engine.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs(connection.dialect.name))
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
