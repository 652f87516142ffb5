import random
import sys
import time
from datetime import date, datetime, timezone

import httpx
from supabase import ClientOptions
from supabase import create_client as _create_client

from backend.config import Settings
from backend.errors import (
    ConfigurationError,
    ExistenceCheckError,
    MalformedRecordError,
    WriteError,
)
from backend.models import (
    FetchLog,
    OpportunityStatus,
    ProgramType,
    Source,
)

OPPORTUNITIES = "opportunities"
SOURCES = "opportunity_sources"
FETCH_LOGS = "fetch_logs"
INGEST_RUNS = "ingest_runs"
CONFLICT_TARGET = "program_type,canonical_url"


def create_client(settings: Settings):
    if not settings.supabase_url or not settings.supabase_key:
        missing = []
        if not settings.supabase_url:
            missing.append("SUPABASE_URL")
        if not settings.supabase_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_KEY")
        raise ConfigurationError(f"Missing {', '.join(missing)}")
    options = ClientOptions(postgrest_client_timeout=settings.call_timeout)
    return _create_client(settings.supabase_url, settings.supabase_key, options=options)


def _is_transient_run_row_error(err: Exception) -> bool:
    if isinstance(err, (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError)):
        return True
    msg = str(err)
    transient_markers = [
        "UNEXPECTED_EOF_WHILE_READING",
        "SSL",
        "Connection reset",
        "Broken pipe",
        "timeout",
    ]
    return any(m in msg for m in transient_markers)


def _run_row_retry(fn, *args, delays=(1, 2, 4), **kwargs):
    for i, delay in enumerate(delays, start=1):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if not _is_transient_run_row_error(e) or i == len(delays):
                raise
            jitter = random.uniform(0, 0.2)
            print(f"RUN_ROW_RETRY attempt={i} error={str(e)[:200]}")
            time.sleep(delay + jitter)


class OpportunityStore:
    """Keyed upsert/select/update/delete over the supabase tables the pipeline owns."""

    def __init__(self, sb):
        self.sb = sb

    def find_opportunity_id(self, canonical_url: str) -> str | None:
        try:
            res = (
                self.sb.table(OPPORTUNITIES)
                .select("id")
                .eq("canonical_url", canonical_url)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise ExistenceCheckError(str(e)) from e
        if res.data:
            return str(res.data[0].get("id"))
        return None

    def upsert_opportunity(self, payload: dict) -> None:
        try:
            self.sb.table(OPPORTUNITIES).upsert(payload, on_conflict=CONFLICT_TARGET).execute()
        except Exception as e:
            raise WriteError(str(e)) from e

    def update_opportunity(self, row_id: str, fields: dict) -> None:
        try:
            self.sb.table(OPPORTUNITIES).update(fields).eq("id", row_id).execute()
        except Exception as e:
            raise WriteError(str(e)) from e

    def select_for_verify(
        self,
        statuses: list[OpportunityStatus],
        limit: int,
        program_type: ProgramType | None = None,
    ) -> list[dict]:
        query = (
            self.sb.table(OPPORTUNITIES)
            .select("*")
            .in_("status", [s.value for s in statuses])
            .order("last_verified_at", desc=False, nullsfirst=True)
            .limit(limit)
        )
        if program_type:
            query = query.eq("program_type", program_type.value)
        return query.execute().data or []

    def expire_past_deadline(self, today: date) -> list[dict]:
        # lt() never matches a null deadline
        res = (
            self.sb.table(OPPORTUNITIES)
            .update(
                {
                    "status": OpportunityStatus.EXPIRED.value,
                    "status_reason": "deadline_passed",
                }
            )
            .lt("deadline_date", today.isoformat())
            .neq("status", OpportunityStatus.EXPIRED.value)
            .execute()
        )
        return res.data or []

    def delete_past_deadline(self, today: date) -> list[dict]:
        res = (
            self.sb.table(OPPORTUNITIES)
            .delete()
            .lt("deadline_date", today.isoformat())
            .execute()
        )
        return res.data or []

    def list_sources(self, program_type: ProgramType | None = None) -> list[Source]:
        query = self.sb.table(SOURCES).select("*").eq("active", True)
        if program_type:
            query = query.eq("program_type", program_type.value)
        sources = []
        for row in query.execute().data or []:
            try:
                sources.append(Source.from_row(row))
            except MalformedRecordError as e:
                print(f"SOURCE_MALFORMED {e}", file=sys.stderr)
        return sources

    def upsert_sources(self, rows: list[dict]) -> None:
        self.sb.table(SOURCES).upsert(rows, on_conflict="key").execute()

    def insert_fetch_log(self, log: FetchLog) -> None:
        try:
            self.sb.table(FETCH_LOGS).insert(log.to_row()).execute()
        except Exception as e:
            print(
                f"FETCH_LOG_UNAVAILABLE url={log.fetched_url} error={str(e)[:200]}",
                file=sys.stderr,
            )

    def start_ingest_run(self, job_name: str) -> str | None:
        try:
            res = _run_row_retry(
                lambda: self.sb.table(INGEST_RUNS).insert({"job_name": job_name}).execute()
            )
            return res.data[0]["id"]
        except Exception:
            print("RUN_ROW_UNAVAILABLE proceeding_without_run_row=1")
            return None

    def finish_ingest_run(
        self, run_id: str | None, ok: bool, stats: dict, error: str | None = None
    ) -> None:
        if not run_id:
            return
        payload = {
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "ok": ok,
            "stats": stats or {},
            "error": error,
        }
        try:
            _run_row_retry(
                lambda: self.sb.table(INGEST_RUNS).update(payload).eq("id", run_id).execute()
            )
        except Exception as e:
            if _is_transient_run_row_error(e):
                print("RUN_ROW_UNAVAILABLE finish_failed=1")
            else:
                print(f"RUN_ROW_UNAVAILABLE finish_failed=1 error={str(e)[:200]}")
