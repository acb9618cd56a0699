"""Title and link filtering applied to raw items before they reach the store."""

from typing import Optional

from models import RawItem, Watch


def matches_strict(title: str, terms: list[str]) -> bool:
    """True when every term is a case-insensitive substring of title."""
    title_lower = (title or "").lower()
    return all(term.lower() in title_lower for term in terms)


def is_excluded(title: str, exclude_terms: list[str]) -> bool:
    """True when any exclusion term appears in title."""
    title_lower = (title or "").lower()
    for term in exclude_terms:
        term = term.strip().lower()
        if term and term in title_lower:
            return True
    return False


def filter_items(
    items: list[RawItem],
    watch: Watch,
    blacklist: Optional[list[str]] = None,
    blocked_urls: Optional[set[str]] = None,
) -> list[RawItem]:
    """Drop blocked links and items failing the watch's title rules.

    Order: blocked link -> strict term check -> per-watch exclude terms -> global blacklist.
    """
    exclusions = list(watch.exclude_terms) + list(blacklist or [])
    blocked_urls = blocked_urls or set()
    kept = []
    for item in items:
        if item.link in blocked_urls:
            continue
        if watch.strict and not matches_strict(item.title, watch.terms):
            continue
        if exclusions and is_excluded(item.title, exclusions):
            continue
        kept.append(item)
    return kept
