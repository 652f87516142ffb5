import calendar
from dataclasses import replace
from datetime import datetime, timezone

import feedparser

from backend.errors import FetchError
from backend.models import FeedItem, FetchAction, FetchStatus, Source
from runner.ingest.content import canonicalize_url, extract_text
from runner.ingest.http import PoliteFetcher, fetch_log_for


def get_published(entry) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    except (OverflowError, ValueError, TypeError):
        return None


def get_description(entry) -> str:
    raw = entry.get("summary") or ""
    if not raw:
        content = entry.get("content") or []
        if content:
            raw = content[0].get("value") or ""
    return extract_text(raw) if "<" in raw else raw.strip()


def parse_feed(text: str, source: Source) -> list[FeedItem]:
    parsed = feedparser.parse(text)
    entries = parsed.get("entries") or []
    if parsed.get("bozo") and not entries:
        exc = parsed.get("bozo_exception")
        raise ValueError(f"feed_parse_error: {exc}")
    items = []
    for entry in entries:
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        items.append(
            FeedItem(
                title=title,
                link=canonicalize_url(link),
                description=get_description(entry),
                published_at=get_published(entry),
                source=source.base_url,
                inferred_type=source.program_type,
                source_url=source.base_url,
            )
        )
    return items


def fetch_feed(source: Source, fetcher: PoliteFetcher, store=None) -> list[FeedItem]:
    fetched = fetcher.fetch(
        source.base_url,
        min_delay_ms=source.min_delay_ms,
        respect_robots=source.respect_robots,
        # feed text is posting copy, not a page that can be walled
        inspect_body=False,
    )
    items: list[FeedItem] = []
    parse_error = None
    if fetched.status == FetchStatus.OK:
        try:
            items = parse_feed(fetched.body_text or "", source)
        except ValueError as e:
            parse_error = str(e)[:500]
            fetched = replace(fetched, status=FetchStatus.ERROR)

    if store is not None:
        store.insert_fetch_log(
            fetch_log_for(
                fetched,
                FetchAction.DISCOVER,
                program_type=source.program_type,
                source_id=source.id,
                error_message=parse_error,
            )
        )
    print(
        f"DISCOVER_FETCH source={source.key} status={fetched.status.value} "
        f"http={fetched.http_status} elapsed_ms={fetched.elapsed_ms} items={len(items)}"
    )
    if fetched.status != FetchStatus.OK:
        reason = parse_error or fetched.blocked_reason or fetched.error_message or fetched.status.value
        raise FetchError(source.key, reason)
    return items
