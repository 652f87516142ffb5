import argparse
import json
import sys
from datetime import date, datetime, timezone

from backend.config import Settings, load_settings
from backend.db import OpportunityStore, create_client
from backend.errors import ConfigurationError

JOB_NAME = "reap"


def run_reap(settings: Settings, store, today: date | None = None, mode: str | None = None) -> dict:
    """Expires (or deletes) every row whose deadline is before today. Null deadlines never match."""
    today = today or datetime.now(timezone.utc).date()
    mode = mode or settings.reaper_mode
    if mode == "delete":
        rows = store.delete_past_deadline(today)
        ids = [str(r.get("id")) for r in rows]
        print(f"REAP_DONE mode=delete today={today.isoformat()} deleted={len(ids)}")
        return {"today": today.isoformat(), "mode": mode, "deletedCount": len(ids), "ids": ids}

    rows = store.expire_past_deadline(today)
    ids = [str(r.get("id")) for r in rows]
    print(f"REAP_DONE mode=expire today={today.isoformat()} expired={len(ids)}")
    return {"today": today.isoformat(), "mode": "expire", "expiredCount": len(ids), "ids": ids}


def run_job(
    settings: Settings,
    store: OpportunityStore | None = None,
    today: date | None = None,
    mode: str | None = None,
) -> dict:
    store = store or OpportunityStore(create_client(settings))
    run_id = store.start_ingest_run(JOB_NAME)
    try:
        summary = run_reap(settings, store, today=today, mode=mode)
    except Exception as e:
        store.finish_ingest_run(run_id, ok=False, stats={}, error=str(e)[:500])
        raise
    stats = {k: v for k, v in summary.items() if k != "ids"}
    store.finish_ingest_run(run_id, ok=True, stats=stats)
    return summary


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--today", default="", help="ISO date to reap against (default: UTC today)")
    parser.add_argument("--mode", choices=["expire", "delete"], default=None)
    args = parser.parse_args()

    today = date.fromisoformat(args.today) if args.today else None
    try:
        summary = run_job(load_settings(), today=today, mode=args.mode)
    except ConfigurationError as e:
        print(f"CONFIG_ERROR {e}", file=sys.stderr)
        return 2
    print(json.dumps(summary))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
