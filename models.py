"""Watch, item and result models."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawItem(BaseModel):
    """Unfiltered candidate result returned by one source."""

    title: str
    link: str
    price: str = ""
    source: str
    image: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def price_as_text(cls, v) -> str:
        # Prices are opaque; never parsed or compared numerically
        if v is None:
            return ""
        return str(v)


class Watch(BaseModel):
    """A user's standing search query."""

    id: str
    name: str = ""
    terms: list[str]
    active: bool = True
    strict: bool = True
    enabled_sites: dict[str, bool] = {}
    exclude_terms: list[str] = []
    notify: bool = True
    poll_interval_seconds: Optional[int] = None
    created_at: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_result_count: Optional[int] = None

    @field_validator("terms")
    @classmethod
    def require_terms(cls, v: list[str]) -> list[str]:
        terms = [t.strip() for t in v if t and t.strip()]
        if not terms:
            raise ValueError("a watch needs at least one search term")
        return terms

    @model_validator(mode="after")
    def fill_defaults(self) -> "Watch":
        if not self.name:
            self.name = self.terms[0]
        if self.created_at is None:
            self.created_at = utcnow()
        return self


class ResultItem(BaseModel):
    """One uniquely identified offer ever seen for a watch."""

    watch_id: str
    link: str
    title: str
    source: str
    price: str = ""
    first_seen_at: datetime
    is_new: bool = True


class ResultsMeta(BaseModel):
    watch_id: str
    total_count: int = 0
    new_count: int = 0


class IngestResult(BaseModel):
    """Delta produced by one ingest call."""

    watch_id: str
    new_items: list[ResultItem] = []
    total_count: int
    new_count: int


class CollectResult(BaseModel):
    """Union of items gathered from all enabled sources for one watch."""

    items: list[RawItem] = []
    errors: dict[str, str] = {}
    sources: list[str] = []

    @property
    def status(self) -> str:
        """One of "ok", "partial", "failed" or "empty" (no source enabled)."""
        if not self.sources:
            return "empty"
        if not self.errors:
            return "ok"
        if len(self.errors) >= len(self.sources):
            return "failed"
        return "partial"


class BlockedItem(BaseModel):
    """An offer the user never wants to see again, keyed by its link."""

    id: str
    url: str
    title: str = ""
    image: str = ""
    blocked_at: datetime
