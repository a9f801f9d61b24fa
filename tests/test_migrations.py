from pathlib import Path

import allure
from sqlalchemy import text

from brand_monitor.catalog.repository import CatalogRepository

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = CatalogRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table' AND name != 'alembic_version'
                ORDER BY name
                """,
            ),
        ).scalars().all()
    repository.close()

    assert version == "20261001_0001"
    assert tables == [
        "analysis_jobs",
        "citation_records",
        "competitors",
        "provider_results",
        "queue_items",
        "scopes",
        "sentiment_records",
        "tracked_prompts",
    ]


def test_programmatic_upgrade_ignores_database_url_override(tmp_path: Path, monkeypatch) -> None:
    elsewhere = tmp_path / "elsewhere.db"
    monkeypatch.setenv("BRAND_MONITOR_DATABASE_URL", f"sqlite:///{elsewhere}")
    repository = CatalogRepository(tmp_path / "target.db")
    repository.init_schema()

    scope = repository.add_scope(name="Acme", brand_name="Acme")
    repository.close()

    assert scope.brand_name == "Acme"
    assert not elsewhere.exists()
