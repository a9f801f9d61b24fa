"""Catalog repository: scopes, tracked prompts and competitors.

The pipeline only reads from here. Rows are written by the CLI `catalog`
commands or by the host application sharing the database.
"""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from brand_monitor.catalog.models import CompetitorView, ScopeView, TrackedPromptView
from brand_monitor.pipeline.models import EntityType, TrackedEntity
from brand_monitor.storage.alembic_runner import upgrade_head
from brand_monitor.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from brand_monitor.storage.sqlmodel_models import Competitor, Scope, TrackedPrompt


class CatalogRepository:
    """SQLModel-backed access to catalog tables."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def add_scope(
        self,
        *,
        name: str,
        brand_name: str,
        brand_domain: str | None = None,
        scope_id: str | None = None,
    ) -> ScopeView:
        if not brand_name.strip():
            raise ValueError("brand_name must not be empty")
        with Session(self.engine) as session:
            row = Scope(
                scope_id=scope_id or str(uuid4()),
                name=name.strip(),
                brand_name=brand_name.strip(),
                brand_domain=brand_domain,
                is_active=True,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_scope_view(row)

    def add_prompt(
        self,
        *,
        scope_id: str,
        prompt_text: str,
        prompt_id: str | None = None,
    ) -> TrackedPromptView:
        if not prompt_text.strip():
            raise ValueError("prompt_text must not be empty")
        with Session(self.engine) as session:
            self._require_scope(session, scope_id)
            row = TrackedPrompt(
                prompt_id=prompt_id or str(uuid4()),
                scope_id=scope_id,
                prompt_text=prompt_text.strip(),
                is_active=True,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_prompt_view(row)

    def add_competitor(
        self,
        *,
        scope_id: str,
        name: str,
        domain: str | None = None,
    ) -> CompetitorView:
        if not name.strip():
            raise ValueError("competitor name must not be empty")
        with Session(self.engine) as session:
            self._require_scope(session, scope_id)
            row = Competitor(
                competitor_id=str(uuid4()),
                scope_id=scope_id,
                name=name.strip(),
                domain=domain,
                is_active=True,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise RuntimeError(
                    f"Competitor {name!r} already exists in scope {scope_id}.",
                ) from exc
            session.refresh(row)
            return _to_competitor_view(row)

    def set_prompt_active(self, prompt_id: str, *, is_active: bool) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(TrackedPrompt).where(TrackedPrompt.prompt_id == prompt_id),
            ).one_or_none()
            if row is None:
                return False
            row.is_active = is_active
            session.add(row)
            session.commit()
            return True

    def get_scope(self, scope_id: str) -> ScopeView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Scope).where(Scope.scope_id == scope_id)).one_or_none()
            return _to_scope_view(row) if row is not None else None

    def list_scopes(self, *, active_only: bool = False) -> list[ScopeView]:
        with Session(self.engine) as session:
            query = select(Scope)
            if active_only:
                query = query.where(col(Scope.is_active).is_(True))
            rows = session.exec(query.order_by(col(Scope.name).asc())).all()
            return [_to_scope_view(row) for row in rows]

    def get_prompt(self, prompt_id: str) -> TrackedPromptView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TrackedPrompt).where(TrackedPrompt.prompt_id == prompt_id),
            ).one_or_none()
            return _to_prompt_view(row) if row is not None else None

    def list_prompts(self, *, scope_id: str) -> list[TrackedPromptView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TrackedPrompt)
                .where(TrackedPrompt.scope_id == scope_id)
                .order_by(col(TrackedPrompt.created_at).asc()),
            ).all()
            return [_to_prompt_view(row) for row in rows]

    def active_prompt_page(
        self,
        *,
        page_size: int,
        after_prompt_id: str | None = None,
        scope_id: str | None = None,
    ) -> list[TrackedPromptView]:
        """One keyset page of active prompts in active scopes, ordered by prompt id."""

        with Session(self.engine) as session:
            query = (
                select(TrackedPrompt)
                .join(Scope, col(Scope.scope_id) == col(TrackedPrompt.scope_id))
                .where(
                    col(TrackedPrompt.is_active).is_(True),
                    col(Scope.is_active).is_(True),
                )
            )
            if scope_id is not None:
                query = query.where(TrackedPrompt.scope_id == scope_id)
            if after_prompt_id is not None:
                query = query.where(col(TrackedPrompt.prompt_id) > after_prompt_id)
            rows = session.exec(
                query.order_by(col(TrackedPrompt.prompt_id).asc()).limit(page_size),
            ).all()
            return [_to_prompt_view(row) for row in rows]

    def list_competitors(self, *, scope_id: str, active_only: bool = True) -> list[CompetitorView]:
        with Session(self.engine) as session:
            query = select(Competitor).where(Competitor.scope_id == scope_id)
            if active_only:
                query = query.where(col(Competitor.is_active).is_(True))
            rows = session.exec(query.order_by(col(Competitor.name).asc())).all()
            return [_to_competitor_view(row) for row in rows]

    def tracked_entities(self, scope_id: str) -> list[TrackedEntity]:
        """Brand first, then active competitors whose name differs from the brand."""

        scope = self.get_scope(scope_id)
        if scope is None:
            return []
        entities = [TrackedEntity(name=scope.brand_name, entity_type=EntityType.BRAND)]
        seen = {scope.brand_name.casefold()}
        for competitor in self.list_competitors(scope_id=scope_id):
            key = competitor.name.casefold()
            if key in seen:
                continue
            seen.add(key)
            entities.append(
                TrackedEntity(
                    name=competitor.name,
                    entity_type=EntityType.COMPETITOR,
                    competitor_id=competitor.competitor_id,
                ),
            )
        return entities

    @staticmethod
    def _require_scope(session: Session, scope_id: str) -> None:
        exists = session.exec(select(Scope.scope_id).where(Scope.scope_id == scope_id)).first()
        if exists is None:
            raise RuntimeError(f"Scope not found: {scope_id}")


def _to_scope_view(row: Scope) -> ScopeView:
    return ScopeView(
        scope_id=row.scope_id,
        name=row.name,
        brand_name=row.brand_name,
        brand_domain=row.brand_domain,
        is_active=row.is_active,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_prompt_view(row: TrackedPrompt) -> TrackedPromptView:
    return TrackedPromptView(
        prompt_id=row.prompt_id,
        scope_id=row.scope_id,
        prompt_text=row.prompt_text,
        is_active=row.is_active,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_competitor_view(row: Competitor) -> CompetitorView:
    return CompetitorView(
        competitor_id=row.competitor_id,
        scope_id=row.scope_id,
        name=row.name,
        domain=row.domain,
        is_active=row.is_active,
        created_at=to_utc_aware_datetime(row.created_at),
    )
