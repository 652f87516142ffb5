from datetime import datetime, timezone

from backend.errors import ExistenceCheckError
from backend.models import FeedItem, RunReport
from runner.ingest.content import canonicalize_url

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def dedupe_in_run(items: list[FeedItem]) -> list[FeedItem]:
    """First item seen for a canonical link wins; later duplicates are dropped silently."""
    seen: set[str] = set()
    out = []
    for item in items:
        key = canonicalize_url(item.link)
        if not key or key in seen:
            continue
        seen.add(key)
        item.link = key
        out.append(item)
    return out


def split_existing(items: list[FeedItem], store, report: RunReport) -> list[FeedItem]:
    """
    Looks each item up in the store once. Known links are reported as "updated" and
    never reach enrichment; a failed lookup skips the item.
    """
    fresh = []
    for item in items:
        try:
            existing_id = store.find_opportunity_id(item.link)
        except ExistenceCheckError as e:
            report.add_skip(item.link, "existing_check_error", str(e))
            continue
        if existing_id:
            report.add_result(item.link, "updated")
            continue
        fresh.append(item)
    return fresh


def _published_key(item: FeedItem) -> datetime:
    published = item.published_at
    if published is None:
        return _OLDEST
    if published.tzinfo is None:
        return published.replace(tzinfo=timezone.utc)
    return published


def newest_first(items: list[FeedItem], cap: int) -> list[FeedItem]:
    # sorted() is stable so undated items keep their fetch order at the tail
    return sorted(items, key=_published_key, reverse=True)[:cap]
