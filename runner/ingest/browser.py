import time

from playwright.sync_api import sync_playwright

from backend.models import FeedItem, FetchResult, Source
from runner.ingest.content import canonicalize_url, looks_blocked, resolve_url
from runner.ingest.crawl import AnchorListingStrategy, ExtractionStrategy

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)


class PlaywrightListingStrategy(ExtractionStrategy):
    """
    Renders the listing in headless chromium for sites that build their
    result lists client-side. Any browser failure falls back to the plain
    anchors of the page the fetcher already retrieved.
    """

    name = "playwright"

    def __init__(
        self,
        max_pages: int = 1,
        page_param: str = "",
        link_selector: str = "a[href]",
        max_links: int = 40,
        wait_until: str = "domcontentloaded",
        timeout_ms: int = 30000,
        headless: bool = True,
    ):
        self.max_pages = max_pages
        self.page_param = page_param
        self.link_selector = link_selector
        self.max_links = max_links
        self.wait_until = wait_until
        self.timeout_ms = timeout_ms
        self.headless = headless
        self.fallback = AnchorListingStrategy()

    def _render_links(self, base_url: str, source_key: str) -> tuple[list[tuple[str, str]], bool]:
        links: list[tuple[str, str]] = []
        blocked = False
        with sync_playwright() as p:
            browser = p.chromium.launch(
                headless=self.headless,
                args=[
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                    "--disable-blink-features=AutomationControlled",
                ],
            )
            context = browser.new_context(
                user_agent=BROWSER_USER_AGENT,
                viewport={"width": 1280, "height": 800},
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
            page = context.new_page()
            try:
                for i in range(self.max_pages):
                    url = base_url
                    if self.page_param:
                        url = base_url.rstrip("/") + "/" + (self.page_param % (i + 1))
                    print(f"BROWSER_START source={source_key} url={url}")
                    page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)
                    html = page.content() or ""
                    if looks_blocked(html):
                        blocked = True
                        print(f"BROWSER_BLOCKED source={source_key} reason=challenge")
                        break
                    for a in page.query_selector_all(self.link_selector):
                        href = a.get_attribute("href") or ""
                        text = " ".join((a.inner_text() or "").split())
                        resolved = resolve_url(url, href)
                        if resolved:
                            links.append((resolved, text))
                    if i + 1 < self.max_pages:
                        time.sleep(2 + (i % 2))
            finally:
                page.close()
                context.close()
                browser.close()
        return links[: self.max_links], blocked

    def extract(self, source: Source, page: FetchResult) -> list[FeedItem]:
        try:
            links, blocked = self._render_links(source.base_url, source.key)
        except Exception as e:
            print(
                f"BROWSER_FAIL source={source.key} err={type(e).__name__} msg={str(e)[:200]}"
            )
            return self.fallback.extract(source, page)
        if blocked or not links:
            return self.fallback.extract(source, page)
        return [
            FeedItem(
                title=text,
                link=canonicalize_url(href),
                description="",
                published_at=None,
                source=source.key,
                inferred_type=source.program_type,
                source_url=source.base_url,
            )
            for href, text in links
        ]
