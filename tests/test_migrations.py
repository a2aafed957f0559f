import os

os.environ.setdefault("DB_BACKEND", "sqlite")

from sqlalchemy import inspect

import core.config as config
from core import db as db_module
from core.models import Base


def test_migrations_build_the_model_schema(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrated.sqlite'}"
    monkeypatch.setattr(config, "DATABASE_URL", url)
    monkeypatch.setattr(config, "AUTO_MIGRATE_ON_STARTUP", True)
    engine = db_module.build_engine(url)
    try:
        db_module._migrate_to_head(engine)
        applied, head = db_module.schema_revisions(engine)
        assert applied == head

        inspector = inspect(engine)
        for table in Base.metadata.sorted_tables:
            migrated = {column["name"] for column in inspector.get_columns(table.name)}
            assert migrated == {column.name for column in table.columns}, table.name

        term_columns = {column["name"] for column in inspector.get_columns("terms")}
        assert "reminders" not in term_columns
        assert "metadata" not in term_columns
    finally:
        engine.dispose()
