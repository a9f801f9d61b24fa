"""Read models for catalog entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class ScopeView:
    scope_id: str
    name: str
    brand_name: str
    brand_domain: str | None
    is_active: bool
    created_at: datetime


@dataclass(slots=True)
class TrackedPromptView:
    prompt_id: str
    scope_id: str
    prompt_text: str
    is_active: bool
    created_at: datetime


@dataclass(slots=True)
class CompetitorView:
    competitor_id: str
    scope_id: str
    name: str
    domain: str | None
    is_active: bool
    created_at: datetime
