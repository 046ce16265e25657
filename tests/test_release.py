import pytest

from scripts.release import alembic_config, release_database_url


def test_release_requires_database_url():
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        release_database_url({})
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        release_database_url({"DATABASE_URL": "   "})


@pytest.mark.parametrize("env", ["prod", "Production"])
def test_release_refuses_sqlite_in_production(env):
    with pytest.raises(RuntimeError, match="sqlite"):
        release_database_url({"DATABASE_URL": "sqlite:///studio.db", "ENV": env})


def test_release_database_url():
    assert release_database_url({"DATABASE_URL": " sqlite:///dev.db ", "ENV": "dev"}) == "sqlite:///dev.db"
    pg = "postgresql+psycopg2://u:p@db/studio"
    assert release_database_url({"DATABASE_URL": pg, "ENV": "production"}) == pg


def test_alembic_config_points_at_migrations():
    cfg = alembic_config("sqlite:///x.db")
    assert cfg.get_main_option("sqlalchemy.url") == "sqlite:///x.db"
    assert cfg.get_main_option("script_location").endswith("migrations")
