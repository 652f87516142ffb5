from __future__ import annotations

import itertools
from datetime import date
from pathlib import Path

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from backend.config import Settings
from backend.errors import ExistenceCheckError, WriteError
from backend.models import OpportunityStatus


class FakeStore:
    """In-memory stand-in for OpportunityStore with the same upsert/default semantics."""

    DEFAULTS = {
        "status": OpportunityStatus.ACTIVE.value,
        "status_reason": None,
        "verify_failures": 0,
        "freshness_score": 0,
        "deadline_date": None,
        "deadline_confidence": "LOW",
        "last_verified_at": None,
        "content_hash": None,
        "etag": None,
        "page_last_modified": None,
    }

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], dict] = {}
        self._ids = itertools.count(1)
        self.upserts: list[dict] = []
        self.updates: list[tuple[str, dict]] = []
        self.fetch_logs: list = []
        self.sources: list = []
        self.runs: list[dict] = []
        self.lookup_errors: set[str] = set()
        self.write_errors: set[str] = set()

    def seed(self, **row) -> dict:
        full = {**self.DEFAULTS, "id": str(next(self._ids)), **row}
        self.rows[(full["program_type"], full["canonical_url"])] = full
        return full

    def by_url(self, canonical_url: str) -> list[dict]:
        return [r for r in self.rows.values() if r["canonical_url"] == canonical_url]

    def find_opportunity_id(self, canonical_url: str) -> str | None:
        if canonical_url in self.lookup_errors:
            raise ExistenceCheckError("connection reset by peer")
        found = self.by_url(canonical_url)
        return found[0]["id"] if found else None

    def upsert_opportunity(self, payload: dict) -> None:
        if payload["canonical_url"] in self.write_errors:
            raise WriteError("duplicate key value violates unique constraint")
        self.upserts.append(dict(payload))
        key = (payload["program_type"], payload["canonical_url"])
        if key in self.rows:
            self.rows[key].update(payload)
        else:
            self.rows[key] = {**self.DEFAULTS, "id": str(next(self._ids)), **payload}

    def update_opportunity(self, row_id: str, fields: dict) -> None:
        if row_id in self.write_errors:
            raise WriteError("update failed")
        self.updates.append((row_id, dict(fields)))
        for row in self.rows.values():
            if row["id"] == row_id:
                row.update(fields)

    def select_for_verify(self, statuses, limit, program_type=None) -> list[dict]:
        wanted = {s.value for s in statuses}
        rows = [r for r in self.rows.values() if r.get("status") in wanted]
        if program_type:
            rows = [r for r in rows if r["program_type"] == program_type.value]
        rows.sort(key=lambda r: (r.get("last_verified_at") is not None, str(r.get("last_verified_at") or "")))
        return [dict(r) for r in rows[:limit]]

    def _past(self, today: date) -> list[dict]:
        return [
            r
            for r in self.rows.values()
            if r.get("deadline_date") and date.fromisoformat(str(r["deadline_date"])) < today
        ]

    def expire_past_deadline(self, today: date) -> list[dict]:
        out = []
        for row in self._past(today):
            if row["status"] == OpportunityStatus.EXPIRED.value:
                continue
            row["status"] = OpportunityStatus.EXPIRED.value
            row["status_reason"] = "deadline_passed"
            out.append(dict(row))
        return out

    def delete_past_deadline(self, today: date) -> list[dict]:
        doomed = self._past(today)
        for row in doomed:
            del self.rows[(row["program_type"], row["canonical_url"])]
        return [dict(r) for r in doomed]

    def list_sources(self, program_type=None) -> list:
        return [s for s in self.sources if not program_type or s.program_type == program_type]

    def insert_fetch_log(self, log) -> None:
        self.fetch_logs.append(log)

    def start_ingest_run(self, job_name: str) -> str:
        self.runs.append({"job_name": job_name})
        return str(len(self.runs))

    def finish_ingest_run(self, run_id, ok, stats, error=None) -> None:
        self.runs[int(run_id) - 1].update({"ok": ok, "stats": stats, "error": error})


class FakeLLM:
    def __init__(self, response: str | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    def generate_json(self, prompt: str, schema: dict) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response or ""


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: str | bytes = "",
        headers: dict | None = None,
        url: str | None = None,
        json_data=None,
    ) -> None:
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self.encoding = "utf-8"
        self._json = json_data

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    """Routes GET/POST by exact URL. Unknown robots.txt URLs answer 404."""

    def __init__(self, routes: dict | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[dict] = []

    def _answer(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        target = self.routes.get(url)
        if target is None:
            if url.endswith("/robots.txt"):
                return FakeResponse(404, "")
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(target, Exception):
            raise target
        if callable(target):
            return target(url, **kwargs)
        if target.url is None:
            target.url = url
        return target

    def get(self, url: str, **kwargs):
        return self._answer("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self._answer("POST", url, **kwargs)

    def page_calls(self) -> list[dict]:
        return [c for c in self.calls if not c["url"].endswith("/robots.txt")]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        supabase_url="https://db.example.supabase.co",
        supabase_key="service-role",
        llm_provider="none",
        feeds_path=tmp_path / "feeds.json",
        max_new_per_run=10,
        enrich_batch_size=3,
    )


@pytest.fixture
def make_fetcher():
    from runner.ingest.http import PoliteFetcher

    def _make(routes: dict | None = None, **kwargs):
        session = FakeSession(routes)
        fetcher = PoliteFetcher(timeout=5.0, session=session, sleep=lambda _s: None, **kwargs)
        return fetcher, session

    return _make
