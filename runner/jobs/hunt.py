import argparse
import json
import sys
from datetime import date

from backend.config import Settings, load_settings
from backend.db import OpportunityStore, create_client
from backend.errors import ConfigurationError
from backend.llm.client import build_llm_client
from backend.models import ProgramType, RunReport, parse_program_type
from runner.ingest.search import HuntQuery, TavilySearch, hunt_items
from runner.jobs.discover import ingest_items

JOB_NAME = "hunt"


def run_hunt(
    settings: Settings,
    store,
    llm=None,
    search: TavilySearch | None = None,
    queries: list[HuntQuery] | None = None,
    program_type: ProgramType | None = None,
    today: date | None = None,
) -> dict:
    search = search or TavilySearch(settings.tavily_api_key, timeout=settings.call_timeout)
    report = RunReport()
    items = hunt_items(search, queries, program_type)
    ingest_items(items, store, llm, settings, report, today)
    print(
        f"HUNT_DONE found={report.stats['raw']} created={report.stats['created']} "
        f"skipped={report.stats['skipped']}"
    )
    return report.as_dict()


def run_job(
    settings: Settings,
    program_type: ProgramType | None = None,
    store: OpportunityStore | None = None,
) -> dict:
    # raises ConfigurationError before any store call when TAVILY_API_KEY is unset
    search = TavilySearch(settings.tavily_api_key, timeout=settings.call_timeout)
    store = store or OpportunityStore(create_client(settings))
    llm = build_llm_client(settings)
    run_id = store.start_ingest_run(JOB_NAME)
    try:
        summary = run_hunt(settings, store, llm, search=search, program_type=program_type)
    except Exception as e:
        store.finish_ingest_run(run_id, ok=False, stats={}, error=str(e)[:500])
        raise
    store.finish_ingest_run(run_id, ok=True, stats=summary["stats"])
    return summary


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--program-type", default="", help="Only run queries for this type")
    args = parser.parse_args()

    try:
        summary = run_job(load_settings(), parse_program_type(args.program_type))
    except ConfigurationError as e:
        print(f"CONFIG_ERROR {e}", file=sys.stderr)
        return 2
    print(json.dumps(summary, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
