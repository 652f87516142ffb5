from __future__ import annotations

import requests

from backend.models import FetchAction, FetchStatus, ProgramType
from runner.ingest.content import compute_content_hash
from runner.ingest.http import HostBackoff, PoliteFetcher, fetch_log_for
from conftest import FakeResponse, FakeSession

PAGE = "https://uni.edu/phd/42"
HTML = "<html><h1>PhD in Soil Science</h1><p>Fully funded. Deadline 2026-02-01</p></html>"


def test_ok_fetch_returns_body_and_validators(make_fetcher) -> None:
    fetcher, _ = make_fetcher({PAGE: FakeResponse(200, HTML, {"ETag": '"v1"', "Last-Modified": "Mon, 01 Jun 2026 00:00:00 GMT"})})
    result = fetcher.fetch(PAGE)
    assert result.status == FetchStatus.OK
    assert result.body_text == HTML
    assert result.http_status == 200
    assert result.etag == '"v1"'
    assert result.last_modified.startswith("Mon")
    assert result.response_bytes == len(HTML)


def test_conditional_headers_and_304(make_fetcher) -> None:
    fetcher, session = make_fetcher({PAGE: FakeResponse(304, "")})
    result = fetcher.fetch(PAGE, etag='"v1"', last_modified="yesterday")
    assert result.status == FetchStatus.NOT_MODIFIED
    sent = session.page_calls()[0]["headers"]
    assert sent["If-None-Match"] == '"v1"'
    assert sent["If-Modified-Since"] == "yesterday"


def test_no_conditional_headers_without_validators(make_fetcher) -> None:
    fetcher, session = make_fetcher({PAGE: FakeResponse(200, HTML)})
    fetcher.fetch(PAGE)
    sent = session.page_calls()[0]["headers"]
    assert "If-None-Match" not in sent
    assert "If-Modified-Since" not in sent


def test_403_and_429_are_blocked(make_fetcher) -> None:
    other = "https://other.org/job"
    fetcher, _ = make_fetcher({PAGE: FakeResponse(403, "forbidden"), other: FakeResponse(429, "slow down")})
    for url in (PAGE, other):
        result = fetcher.fetch(url)
        assert result.status == FetchStatus.BLOCKED
        assert result.blocked_reason == "http_blocked"
    assert fetcher.backoff.remaining("uni.edu") > 0


def test_server_error_is_error(make_fetcher) -> None:
    fetcher, _ = make_fetcher({PAGE: FakeResponse(503, "maintenance")})
    result = fetcher.fetch(PAGE)
    assert result.status == FetchStatus.ERROR
    assert result.error_message == "HTTP 503"


def test_network_exception_is_error(make_fetcher) -> None:
    fetcher, _ = make_fetcher({PAGE: requests.ReadTimeout("read timed out")})
    result = fetcher.fetch(PAGE)
    assert result.status == FetchStatus.ERROR
    assert result.error_message.startswith("request_error:ReadTimeout")


def test_oversized_body_is_error(make_fetcher) -> None:
    fetcher, _ = make_fetcher({PAGE: FakeResponse(200, "x" * 2048)}, max_bytes=1024)
    result = fetcher.fetch(PAGE)
    assert result.status == FetchStatus.ERROR
    assert "too large" in result.error_message


def test_interstitial_and_login_wall_are_blocked(make_fetcher) -> None:
    wall = "https://uni.edu/members"
    fetcher, _ = make_fetcher(
        {
            PAGE: FakeResponse(200, "<title>Just a moment...</title> Checking your browser. Cloudflare"),
            wall: FakeResponse(200, "<form>Sign in with your account password</form>"),
        }
    )
    assert fetcher.fetch(PAGE).blocked_reason == "blocked_content"
    assert fetcher.fetch(wall).blocked_reason == "login_wall"


def test_blacklisted_host_never_requested(make_fetcher) -> None:
    fetcher, session = make_fetcher({})
    result = fetcher.fetch("https://www.instagram.com/p/xyz")
    assert result.status == FetchStatus.BLOCKED
    assert result.blocked_reason == "blacklisted_host"
    assert session.calls == []


def test_robots_disallow(make_fetcher) -> None:
    private = "https://uni.edu/private/list"
    fetcher, session = make_fetcher(
        {
            "https://uni.edu/robots.txt": FakeResponse(200, "User-agent: *\nDisallow: /private\n"),
            PAGE: FakeResponse(200, HTML),
        }
    )
    blocked = fetcher.fetch(private)
    assert blocked.status == FetchStatus.BLOCKED
    assert blocked.blocked_reason == "robots_disallow"
    assert fetcher.fetch(PAGE).status == FetchStatus.OK
    assert fetcher.fetch(private, respect_robots=False).status == FetchStatus.ERROR
    robots_calls = [c for c in session.calls if c["url"].endswith("/robots.txt")]
    assert len(robots_calls) == 1


def test_unreachable_robots_means_allowed(make_fetcher) -> None:
    fetcher, _ = make_fetcher({"https://uni.edu/robots.txt": requests.ConnectionError("down"), PAGE: FakeResponse(200, HTML)})
    assert fetcher.fetch(PAGE).status == FetchStatus.OK


def test_blocked_host_backs_off_before_next_request() -> None:
    sleeps: list[float] = []
    session = FakeSession({PAGE: FakeResponse(429, "")})
    fetcher = PoliteFetcher(session=session, sleep=sleeps.append, clock=lambda: 100.0)
    fetcher.fetch(PAGE, min_delay_ms=0)
    fetcher.fetch(PAGE, min_delay_ms=0)
    assert sleeps == [1.5]


def test_host_backoff_grows_and_caps() -> None:
    backoff = HostBackoff(base_sec=1.5, max_sec=60.0, clock=lambda: 0.0)
    assert backoff.penalize("a.org") == 1.5
    assert backoff.penalize("a.org") == 4.5
    for _ in range(10):
        backoff.penalize("a.org")
    assert backoff.remaining("a.org") == 60.0
    assert backoff.remaining("b.org") == 0.0


def test_fetch_log_for_hashes_body(make_fetcher) -> None:
    fetcher, _ = make_fetcher({PAGE: FakeResponse(200, HTML)})
    log = fetch_log_for(fetcher.fetch(PAGE), FetchAction.VERIFY, program_type=ProgramType.PHD)
    row = log.to_row()
    assert row["action"] == "VERIFY"
    assert row["status"] == "OK"
    assert row["program_type"] == "PHD"
    assert row["content_hash"] == compute_content_hash(HTML)
