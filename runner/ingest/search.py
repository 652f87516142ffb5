import sys
from dataclasses import dataclass

import requests

from backend.errors import ConfigurationError, FetchError
from backend.models import FeedItem, ProgramType
from runner.ingest.content import canonicalize_url, is_blacklisted_host, is_generic_page_title

TAVILY_URL = "https://api.tavily.com/search"
MAX_RESULTS = 10


@dataclass(frozen=True)
class HuntQuery:
    query: str
    program_type: ProgramType
    tag: str


HUNT_QUERIES = [
    HuntQuery("PhD position Artificial Intelligence Europe funded", ProgramType.PHD, "PHD_AI_EUROPE"),
    HuntQuery("Marie Curie doctoral network fellowship deadline", ProgramType.PHD, "PHD_MARIE_CURIE"),
    HuntQuery("Junior DevOps Engineer remote Italy", ProgramType.JOB, "JOB_JUNIOR_DEVOPS_IT_REMOTE"),
    HuntQuery("React Developer remote Europe", ProgramType.JOB, "JOB_REACT_EUROPE_REMOTE"),
]


class TavilySearch:
    def __init__(self, api_key: str | None, timeout: float = 20.0, session=None):
        if not api_key:
            raise ConfigurationError("Missing TAVILY_API_KEY")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def search(self, query: str, max_results: int = MAX_RESULTS) -> list[dict]:
        try:
            resp = self.session.post(
                TAVILY_URL,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={
                    "query": query,
                    "search_depth": "advanced",
                    "include_answer": False,
                    "max_results": max_results,
                },
                timeout=(min(5.0, self.timeout), self.timeout),
            )
        except requests.RequestException as e:
            raise FetchError("tavily", f"request_error:{type(e).__name__}") from e
        if resp.status_code != 200:
            raise FetchError("tavily", f"HTTP {resp.status_code}: {(resp.text or '')[:200]}")
        try:
            data = resp.json() or {}
        except ValueError as e:
            raise FetchError("tavily", "bad_json") from e
        return data.get("results") or []


def results_to_items(results: list[dict], hunt: HuntQuery) -> list[FeedItem]:
    items = []
    for r in results:
        title = (r.get("title") or "").strip()
        url = (r.get("url") or "").strip()
        if not title or not url:
            continue
        if is_blacklisted_host(url) or is_generic_page_title(title):
            continue
        items.append(
            FeedItem(
                title=title,
                link=canonicalize_url(url),
                description=(r.get("content") or "").strip(),
                published_at=None,
                source=f"TAVILY_{hunt.tag}",
                inferred_type=hunt.program_type,
            )
        )
    return items


def hunt_items(
    client: TavilySearch,
    queries: list[HuntQuery] | None = None,
    program_type: ProgramType | None = None,
) -> list[FeedItem]:
    items: list[FeedItem] = []
    for hunt in queries or HUNT_QUERIES:
        if program_type and hunt.program_type != program_type:
            continue
        try:
            results = client.search(hunt.query)
        except FetchError as e:
            print(f"HUNT_QUERY_FAIL tag={hunt.tag} error={e}", file=sys.stderr)
            continue
        found = results_to_items(results, hunt)
        print(f"HUNT_QUERY tag={hunt.tag} results={len(results)} kept={len(found)}")
        items.extend(found)
    return items
