from urllib.parse import urlparse

from backend.errors import FetchError
from backend.models import FeedItem, FetchAction, FetchResult, FetchStatus, Source
from runner.ingest.content import (
    canonicalize_url,
    extract_anchors,
    extract_h1,
    extract_text,
    host_of,
    is_generic_page_title,
    take_words,
)
from runner.ingest.http import PoliteFetcher, fetch_log_for

DESCRIPTION_WORDS = 400


def same_host(a: str, b: str) -> bool:
    return bool(host_of(a)) and host_of(a) == host_of(b)


def path_allowed(url: str, source: Source) -> bool:
    path = urlparse(url).path or "/"
    if any(p and path.startswith(p) for p in source.block_paths):
        return False
    if not source.allow_paths:
        return True
    return any(p and path.startswith(p) for p in source.allow_paths)


class ExtractionStrategy:
    """Turns a fetched listing page into candidate items (link + anchor title)."""

    name = "base"

    def extract(self, source: Source, page: FetchResult) -> list[FeedItem]:
        raise NotImplementedError


class AnchorListingStrategy(ExtractionStrategy):
    name = "anchors"

    def extract(self, source: Source, page: FetchResult) -> list[FeedItem]:
        base = page.fetched_url or source.base_url
        items = []
        for href, text in extract_anchors(page.body_text or "", base):
            items.append(
                FeedItem(
                    title=text,
                    link=canonicalize_url(href),
                    description="",
                    published_at=None,
                    source=source.key,
                    inferred_type=source.program_type,
                    source_url=source.base_url,
                )
            )
        return items


def select_candidates(source: Source, candidates: list[FeedItem], seen: set[str]) -> list[FeedItem]:
    out = []
    for item in candidates:
        if item.link in seen:
            continue
        if not same_host(item.link, source.base_url):
            continue
        if not path_allowed(item.link, source):
            continue
        seen.add(item.link)
        out.append(item)
    return out


def page_item(source: Source, candidate: FeedItem, fetched: FetchResult) -> FeedItem:
    html = fetched.body_text or ""
    text = extract_text(html)
    title = extract_h1(html) or candidate.title or take_words(text, 10)
    return FeedItem(
        title=title,
        link=candidate.link,
        description=take_words(text, DESCRIPTION_WORDS),
        published_at=None,
        source=source.key,
        inferred_type=source.program_type,
        source_url=source.base_url,
        html=html,
        etag=fetched.etag,
        last_modified=fetched.last_modified,
    )


def crawl_source(
    source: Source,
    fetcher: PoliteFetcher,
    store=None,
    strategy: ExtractionStrategy | None = None,
) -> list[FeedItem]:
    strategy = strategy or AnchorListingStrategy()
    anchors = AnchorListingStrategy()

    def fetch_logged(url: str) -> FetchResult:
        fetched = fetcher.fetch(
            url,
            canonical_url=url,
            min_delay_ms=source.min_delay_ms,
            respect_robots=source.respect_robots,
        )
        if store is not None:
            store.insert_fetch_log(
                fetch_log_for(fetched, FetchAction.DISCOVER, source.program_type, source.id)
            )
        return fetched

    base_url = canonicalize_url(source.base_url)
    listing = fetch_logged(base_url)
    print(
        f"CRAWL_LISTING source={source.key} strategy={strategy.name} "
        f"status={listing.status.value} http={listing.http_status}"
    )
    if listing.status != FetchStatus.OK:
        raise FetchError(source.key, listing.blocked_reason or listing.error_message or listing.status.value)

    if source.max_depth == 0:
        root = FeedItem(
            title="",
            link=base_url,
            description="",
            published_at=None,
            source=source.key,
            inferred_type=source.program_type,
            source_url=source.base_url,
        )
        return [page_item(source, root, listing)]

    seen = {base_url}
    frontier = select_candidates(source, strategy.extract(source, listing), seen)
    items: list[FeedItem] = []
    budget = source.max_requests_per_run
    depth = 1
    stats = {"fetched": 0, "blocked": 0, "errors": 0, "generic": 0}

    while frontier and budget > 0:
        next_frontier: list[FeedItem] = []
        for candidate in frontier:
            if budget <= 0:
                break
            budget -= 1
            fetched = fetch_logged(candidate.link)
            stats["fetched"] += 1
            if fetched.status == FetchStatus.BLOCKED:
                stats["blocked"] += 1
                continue
            if fetched.status != FetchStatus.OK:
                stats["errors"] += 1
                continue
            item = page_item(source, candidate, fetched)
            if is_generic_page_title(item.title):
                stats["generic"] += 1
            else:
                items.append(item)
            if depth < source.max_depth:
                next_frontier.extend(select_candidates(source, anchors.extract(source, fetched), seen))
        frontier = next_frontier
        depth += 1

    print(
        f"CRAWL_DONE source={source.key} fetched={stats['fetched']} items={len(items)} "
        f"blocked={stats['blocked']} errors={stats['errors']} generic={stats['generic']}"
    )
    return items
