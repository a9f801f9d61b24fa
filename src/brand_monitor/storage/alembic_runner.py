"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

import threading
from pathlib import Path

from alembic import command
from alembic.config import Config

_UPGRADE_LOCK = threading.Lock()


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    root_dir = Path(__file__).resolve().parents[3]
    alembic_ini = root_dir / "alembic.ini"
    alembic_dir = root_dir / "alembic"

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(alembic_dir))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    # env.py only applies BRAND_MONITOR_DATABASE_URL to command-line runs.
    config.attributes["url_from_caller"] = True
    # env.py reads module-level alembic context, so concurrent upgrades in one
    # process must not interleave.
    with _UPGRADE_LOCK:
        command.upgrade(config, "head")
