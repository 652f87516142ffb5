import time
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from backend.config import DEFAULT_USER_AGENT
from backend.models import FetchAction, FetchLog, FetchResult, FetchStatus, ProgramType
from runner.ingest.content import (
    MAX_HASH_CHARS,
    compute_content_hash,
    is_blacklisted_host,
    looks_blocked,
    looks_like_login_wall,
)

MAX_BYTES = 450_000
ROBOTS_TTL_SEC = 6 * 60 * 60
BACKOFF_BASE_SEC = 1.5
BACKOFF_MAX_SEC = 60.0
BLOCKED_HTTP_STATUSES = {401, 403, 429}
ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=0,
        status_forcelist=[],
        allowed_methods=["GET", "HEAD"],
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class HostBackoff:
    """Penalty window per host; each BLOCKED response doubles the remaining wait."""

    def __init__(self, base_sec: float = BACKOFF_BASE_SEC, max_sec: float = BACKOFF_MAX_SEC, clock=time.monotonic):
        self.base_sec = base_sec
        self.max_sec = max_sec
        self.clock = clock
        self.penalty_until: dict[str, float] = {}

    def remaining(self, host: str) -> float:
        return max(0.0, self.penalty_until.get(host, 0.0) - self.clock())

    def penalize(self, host: str, factor: float = 2.0) -> float:
        window = self.remaining(host) * factor + self.base_sec
        window = min(self.max_sec, max(self.base_sec, window))
        self.penalty_until[host] = self.clock() + window
        return window


class HostRateLimiter:
    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self.next_allowed: dict[str, float] = {}

    def delay_for(self, host: str) -> float:
        return max(0.0, self.next_allowed.get(host, 0.0) - self.clock())

    def mark(self, host: str, min_delay_ms: int) -> None:
        self.next_allowed[host] = self.clock() + min_delay_ms / 1000.0


class PoliteFetcher:
    """
    Single-page GET with the crawl etiquette every discovery and verification
    path shares: blacklist, robots.txt, per-host pacing and backoff,
    conditional headers, size cap and interstitial detection.
    """

    def __init__(
        self,
        timeout: float = 20.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
        max_bytes: int = MAX_BYTES,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or build_session()
        self.max_bytes = max_bytes
        self.sleep = sleep
        self.clock = clock
        self.backoff = HostBackoff(clock=clock)
        self.limiter = HostRateLimiter(clock=clock)
        self._robots: dict[str, tuple[float, RobotFileParser | None]] = {}

    def _robots_for(self, url: str) -> RobotFileParser | None:
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        cached = self._robots.get(origin)
        if cached and self.clock() - cached[0] < ROBOTS_TTL_SEC:
            return cached[1]
        rp: RobotFileParser | None = None
        try:
            resp = self.session.get(
                f"{origin}/robots.txt",
                headers={"User-Agent": self.user_agent, "Accept": "text/plain,*/*;q=0.8"},
                timeout=(min(5.0, self.timeout), self.timeout),
            )
            if resp.status_code == 200:
                rp = RobotFileParser()
                rp.parse((resp.text or "").splitlines())
        except requests.RequestException as e:
            print(f"ROBOTS_UNAVAILABLE origin={origin} err={type(e).__name__}")
        # unreachable or missing robots.txt means no rules
        self._robots[origin] = (self.clock(), rp)
        return rp

    def allowed_by_robots(self, url: str) -> bool:
        rp = self._robots_for(url)
        if rp is None:
            return True
        return rp.can_fetch(self.user_agent, url)

    def _wait_turn(self, host: str, min_delay_ms: int) -> None:
        delay = max(self.backoff.remaining(host), self.limiter.delay_for(host))
        if delay > 0:
            self.sleep(delay)
        self.limiter.mark(host, min_delay_ms)

    def fetch(
        self,
        url: str,
        canonical_url: str | None = None,
        etag: str | None = None,
        last_modified: str | None = None,
        min_delay_ms: int = 750,
        respect_robots: bool = True,
        inspect_body: bool = True,
    ) -> FetchResult:
        canonical_url = canonical_url or url

        def result(status: FetchStatus, **kwargs) -> FetchResult:
            kwargs.setdefault("fetched_url", url)
            return FetchResult(status=status, canonical_url=canonical_url, **kwargs)

        if is_blacklisted_host(url):
            return result(FetchStatus.BLOCKED, blocked_reason="blacklisted_host")
        if respect_robots and not self.allowed_by_robots(url):
            return result(FetchStatus.BLOCKED, blocked_reason="robots_disallow")

        host = (urlparse(url).hostname or "unknown").lower()
        self._wait_turn(host, min_delay_ms)

        headers = {"User-Agent": self.user_agent, "Accept": ACCEPT_HTML}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        start_ts = time.monotonic()
        try:
            resp = self.session.get(
                url,
                headers=headers,
                timeout=(min(5.0, self.timeout), self.timeout),
                allow_redirects=True,
            )
        except requests.RequestException as e:
            elapsed_ms = int((time.monotonic() - start_ts) * 1000)
            return result(
                FetchStatus.ERROR,
                elapsed_ms=elapsed_ms,
                error_message=f"request_error:{type(e).__name__}: {str(e)[:200]}",
            )

        elapsed_ms = int((time.monotonic() - start_ts) * 1000)
        common = {
            "fetched_url": getattr(resp, "url", None) or url,
            "http_status": resp.status_code,
            "elapsed_ms": elapsed_ms,
            "etag": resp.headers.get("etag"),
            "last_modified": resp.headers.get("last-modified"),
        }

        if resp.status_code == 304:
            return result(FetchStatus.NOT_MODIFIED, response_bytes=0, **common)

        body = resp.content or b""
        common["response_bytes"] = len(body)

        if resp.status_code in BLOCKED_HTTP_STATUSES:
            self.backoff.penalize(host)
            return result(
                FetchStatus.BLOCKED,
                blocked_reason="http_blocked",
                error_message=f"HTTP {resp.status_code}",
                **common,
            )
        if len(body) > self.max_bytes:
            return result(
                FetchStatus.ERROR,
                error_message=f"Response too large ({len(body)} bytes)",
                **common,
            )

        try:
            text = body.decode(resp.encoding or "utf-8", errors="replace")
        except LookupError:
            text = body.decode("utf-8", errors="replace")
        if inspect_body and (looks_blocked(text) or looks_like_login_wall(text)):
            self.backoff.penalize(host)
            return result(
                FetchStatus.BLOCKED,
                blocked_reason="blocked_content" if looks_blocked(text) else "login_wall",
                **common,
            )
        if not 200 <= resp.status_code < 300:
            return result(FetchStatus.ERROR, error_message=f"HTTP {resp.status_code}", **common)

        return result(FetchStatus.OK, body_text=text, **common)


def fetch_log_for(
    fetched: FetchResult,
    action: FetchAction,
    program_type: ProgramType | None = None,
    source_id: str | None = None,
    error_message: str | None = None,
) -> FetchLog:
    content_hash = None
    if fetched.body_text:
        content_hash = compute_content_hash(fetched.body_text[:MAX_HASH_CHARS])
    return FetchLog(
        action=action,
        status=fetched.status,
        fetched_url=fetched.fetched_url,
        program_type=program_type,
        source_id=source_id,
        canonical_url=fetched.canonical_url,
        http_status=fetched.http_status,
        elapsed_ms=fetched.elapsed_ms,
        response_bytes=fetched.response_bytes,
        etag=fetched.etag,
        page_last_modified=fetched.last_modified,
        content_hash=content_hash,
        blocked_reason=fetched.blocked_reason,
        error_message=error_message or fetched.error_message,
    )
