from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from backend.models import FetchStatus, Opportunity, OpportunityStatus
from conftest import FakeResponse
from runner.jobs.verify import run_verify, verify_statuses
from runner.process.enrich import build_from_html
from runner.process.lifecycle import failure_fields, freshness_from_hours, hours_since

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
URL = "https://uni.edu/phd/42"
HTML = "<h1>PhD in Soil Science</h1><p>Stipend included. Deadline 2026-09-01.</p>"


def _seed(store, **row) -> dict:
    fields = {"program_type": "PHD", "canonical_url": URL, "last_verified_at": (NOW - timedelta(hours=2)).isoformat()}
    fields.update(row)
    return store.seed(**fields)


def test_not_modified_refreshes_freshness(settings, store, make_fetcher) -> None:
    _seed(store, etag='"v1"', freshness_score=40, verify_failures=2)
    fetcher, session = make_fetcher({URL: FakeResponse(304, "")})
    summary = run_verify(settings, store, fetcher, now=NOW)
    row = store.by_url(URL)[0]
    assert summary["not_modified"] == 1
    assert row["freshness_score"] == 100
    assert row["verify_failures"] == 0
    assert row["last_verified_at"] == NOW.isoformat()
    assert session.page_calls()[0]["headers"]["If-None-Match"] == '"v1"'
    assert store.fetch_logs[0].action.value == "VERIFY"


def test_same_content_hash_is_unchanged(settings, store, make_fetcher) -> None:
    _seed(store, content_hash=build_from_html(HTML, URL).content_hash, title_clean="kept")
    fetcher, _ = make_fetcher({URL: FakeResponse(200, HTML)})
    summary = run_verify(settings, store, fetcher, now=NOW)
    assert summary["unchanged"] == 1
    assert store.by_url(URL)[0]["title_clean"] == "kept"


def test_changed_page_updates_fields(settings, store, make_fetcher) -> None:
    _seed(store, content_hash="old", title_clean="Old title")
    fetcher, _ = make_fetcher({URL: FakeResponse(200, HTML, {"ETag": '"v2"'})})
    summary = run_verify(settings, store, fetcher, now=NOW)
    row = store.by_url(URL)[0]
    assert summary["updated"] == 1
    assert row["title_clean"] == "PhD in Soil Science"
    assert row["deadline_date"] == "2026-09-01"
    assert row["etag"] == '"v2"'
    assert row["status"] == "ACTIVE"


def test_changed_page_with_past_deadline_expires(settings, store, make_fetcher) -> None:
    _seed(store, content_hash="old")
    expired_html = "<h1>PhD in Soil Science</h1><p>Deadline 2026-01-15</p>"
    fetcher, _ = make_fetcher({URL: FakeResponse(200, expired_html)})
    summary = run_verify(settings, store, fetcher, now=NOW)
    row = store.by_url(URL)[0]
    assert summary["expired"] == 1
    assert row["status"] == "EXPIRED"
    assert row["status_reason"] == "deadline_passed"


def test_repeated_errors_move_row_to_needs_review(settings, store, make_fetcher) -> None:
    _seed(store)
    fetcher, _ = make_fetcher({URL: FakeResponse(500, "")})
    for _ in range(2):
        run_verify(settings, store, fetcher, now=NOW)
        assert store.by_url(URL)[0]["status"] == "ACTIVE"
    summary = run_verify(settings, store, fetcher, now=NOW)
    row = store.by_url(URL)[0]
    assert summary["errors"] == 1
    assert row["verify_failures"] == 3
    assert row["status"] == "NEEDS_REVIEW"
    assert row["status_reason"] == "verify_failed_3x"


def test_refused_fetches_move_row_to_blocked(settings, store, make_fetcher) -> None:
    _seed(store, verify_failures=2)
    fetcher, _ = make_fetcher({URL: FakeResponse(403, "")})
    summary = run_verify(settings, store, fetcher, now=NOW)
    assert summary["blocked"] == 1
    assert store.by_url(URL)[0]["status"] == "BLOCKED"


def test_blocked_rows_skipped_unless_enabled(settings, store, make_fetcher) -> None:
    _seed(store, status="BLOCKED", verify_failures=3, content_hash=build_from_html(HTML, URL).content_hash)
    fetcher, _ = make_fetcher({URL: FakeResponse(200, HTML)})
    assert run_verify(settings, store, fetcher, now=NOW)["checked"] == 0

    opted_in = replace(settings, verify_include_blocked=True)
    assert OpportunityStatus.BLOCKED in verify_statuses(opted_in)
    summary = run_verify(opted_in, store, fetcher, now=NOW)
    row = store.by_url(URL)[0]
    assert summary["unchanged"] == 1
    assert row["status"] == "ACTIVE"
    assert row["status_reason"] == "reverified"


def test_needs_review_row_recovers(settings, store, make_fetcher) -> None:
    _seed(store, status="NEEDS_REVIEW", verify_failures=3, content_hash="old")
    fetcher, _ = make_fetcher({URL: FakeResponse(200, HTML)})
    run_verify(settings, store, fetcher, now=NOW)
    row = store.by_url(URL)[0]
    assert row["status"] == "ACTIVE"
    assert row["verify_failures"] == 0


def test_malformed_rows_are_counted(settings, store, make_fetcher) -> None:
    store.seed(program_type="PHD", canonical_url="https://uni.edu/bad", freshness_score=500)
    fetcher, _ = make_fetcher({})
    summary = run_verify(settings, store, fetcher, now=NOW)
    assert summary["malformed"] == 1
    assert summary["checked"] == 0


def test_write_failure_counted(settings, store, make_fetcher) -> None:
    row = _seed(store)
    store.write_errors.add(row["id"])
    fetcher, _ = make_fetcher({URL: FakeResponse(304, "")})
    assert run_verify(settings, store, fetcher, now=NOW)["write_errors"] == 1


def test_freshness_decay() -> None:
    assert freshness_from_hours(0) == 100
    assert freshness_from_hours(4) == 80
    assert freshness_from_hours(30) == 0
    assert freshness_from_hours(hours_since(None, NOW)) == 0
    row = Opportunity.from_row(
        {"id": "1", "program_type": "JOB", "canonical_url": URL, "last_verified_at": (NOW - timedelta(hours=4)).isoformat()}
    )
    fields = failure_fields(row, FetchStatus.ERROR, NOW, threshold=3)
    assert fields == {"verify_failures": 1, "freshness_score": 80}
