"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from brand_monitor.catalog.repository import CatalogRepository
from brand_monitor.config import Settings
from brand_monitor.pipeline.queue import QueueRepository
from brand_monitor.pipeline.results import ResultsRepository

_PROVIDER_ENV_VARS = (
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "CLAUDE_API_KEY",
    "ANTHROPIC_API_KEY",
    "PERPLEXITY_API_KEY",
    "BRAND_MONITOR_PROVIDERS",
    "BRAND_MONITOR_PROVIDER_PRICING",
    "BRAND_MONITOR_DATABASE_URL",
)


@pytest.fixture(autouse=True)
def _isolated_provider_env(monkeypatch):
    """Tests never see real provider credentials from the host environment."""
    for name in _PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "brand-monitor.db"


@pytest.fixture()
def catalog(db_path: Path):
    repository = CatalogRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def queue(db_path: Path, catalog: CatalogRepository):
    repository = QueueRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def results(db_path: Path, catalog: CatalogRepository):
    repository = ResultsRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def settings(db_path: Path) -> Settings:
    """Defaults with no inter-batch delay so worker scenarios run instantly."""
    base = Settings(db_path=db_path)
    return replace(base, worker=replace(base.worker, inter_batch_delay_seconds=0.0))
