import argparse
import json
import sys
from datetime import date, datetime, timezone

from backend.config import Settings, load_settings
from backend.db import OpportunityStore, create_client
from backend.errors import ConfigurationError, MalformedRecordError, WriteError
from backend.models import (
    FetchAction,
    FetchStatus,
    Opportunity,
    OpportunityStatus,
    ProgramType,
    parse_program_type,
)
from runner.ingest.http import PoliteFetcher, fetch_log_for
from runner.process.enrich import build_from_html
from runner.process.lifecycle import changed_fields, failure_fields, verified_fields

JOB_NAME = "verify"
VERIFY_MIN_DELAY_MS = 900


def verify_statuses(settings: Settings) -> list[OpportunityStatus]:
    statuses = [OpportunityStatus.ACTIVE, OpportunityStatus.NEEDS_REVIEW]
    if settings.verify_include_blocked:
        statuses.append(OpportunityStatus.BLOCKED)
    return statuses


def verify_one(
    row: Opportunity,
    store,
    fetcher: PoliteFetcher,
    settings: Settings,
    now: datetime,
    today: date,
) -> str:
    """Re-fetches one row and writes its next lifecycle state. Returns the outcome name."""
    fetched = fetcher.fetch(
        row.canonical_url,
        canonical_url=row.canonical_url,
        etag=row.etag,
        last_modified=row.page_last_modified,
        min_delay_ms=VERIFY_MIN_DELAY_MS,
    )
    page = None
    if fetched.status == FetchStatus.OK and fetched.body_text:
        page = build_from_html(fetched.body_text, row.canonical_url, fetched.etag, fetched.last_modified)

    log = fetch_log_for(fetched, FetchAction.VERIFY, program_type=row.program_type)
    if page is not None:
        log.content_hash = page.content_hash
    store.insert_fetch_log(log)

    if fetched.status == FetchStatus.NOT_MODIFIED:
        fields, outcome = verified_fields(row, now), "not_modified"
    elif page is not None:
        same_etag = bool(fetched.etag) and fetched.etag == row.etag
        if same_etag or page.content_hash == row.content_hash:
            fields, outcome = verified_fields(row, now), "unchanged"
        else:
            fields = changed_fields(row, page, now, today)
            outcome = "expired" if fields.get("status") == OpportunityStatus.EXPIRED.value else "updated"
    else:
        status = fetched.status if fetched.status == FetchStatus.BLOCKED else FetchStatus.ERROR
        fields = failure_fields(row, status, now, settings.verify_failure_threshold)
        outcome = "blocked" if status == FetchStatus.BLOCKED else "errors"

    store.update_opportunity(row.id, fields)
    print(
        f"VERIFY_ROW id={row.id} outcome={outcome} fetch={fetched.status.value} "
        f"http={fetched.http_status} status={fields.get('status', row.status.value)}"
    )
    return outcome


def run_verify(
    settings: Settings,
    store,
    fetcher: PoliteFetcher | None = None,
    program_type: ProgramType | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    today = now.date()
    fetcher = fetcher or PoliteFetcher(timeout=settings.call_timeout, user_agent=settings.user_agent)
    limit = min(max(limit or settings.verify_limit, 1), 200)

    rows = store.select_for_verify(verify_statuses(settings), limit, program_type)
    summary = {
        "checked": 0,
        "not_modified": 0,
        "unchanged": 0,
        "updated": 0,
        "expired": 0,
        "blocked": 0,
        "errors": 0,
        "malformed": 0,
        "write_errors": 0,
    }
    for raw in rows:
        try:
            row = Opportunity.from_row(raw)
        except MalformedRecordError as e:
            summary["malformed"] += 1
            print(f"VERIFY_MALFORMED {e}", file=sys.stderr)
            continue
        summary["checked"] += 1
        try:
            outcome = verify_one(row, store, fetcher, settings, now, today)
        except WriteError as e:
            summary["write_errors"] += 1
            print(f"VERIFY_WRITE_FAIL id={row.id} error={str(e)[:200]}", file=sys.stderr)
            continue
        summary[outcome] += 1

    print("VERIFY_DONE " + " ".join(f"{k}={v}" for k, v in summary.items()))
    return summary


def run_job(
    settings: Settings,
    program_type: ProgramType | None = None,
    limit: int | None = None,
    store: OpportunityStore | None = None,
) -> dict:
    store = store or OpportunityStore(create_client(settings))
    run_id = store.start_ingest_run(JOB_NAME)
    try:
        summary = run_verify(settings, store, program_type=program_type, limit=limit)
    except Exception as e:
        store.finish_ingest_run(run_id, ok=False, stats={}, error=str(e)[:500])
        raise
    store.finish_ingest_run(run_id, ok=True, stats=summary)
    return summary


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--program-type", default="")
    parser.add_argument("--limit", type=int, default=None, help="Rows to re-check (1..200)")
    args = parser.parse_args()

    try:
        summary = run_job(load_settings(), parse_program_type(args.program_type), args.limit)
    except ConfigurationError as e:
        print(f"CONFIG_ERROR {e}", file=sys.stderr)
        return 2
    print(json.dumps(summary))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
