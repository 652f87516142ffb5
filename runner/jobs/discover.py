import argparse
import json
import sys
import time
from datetime import date

from backend.config import Settings, load_settings
from backend.db import OpportunityStore, create_client
from backend.errors import ConfigurationError, FetchError
from backend.llm.client import build_llm_client
from backend.models import FeedItem, ProgramType, RunReport, Source, SourceKind, parse_program_type
from runner.ingest.browser import PlaywrightListingStrategy
from runner.ingest.crawl import AnchorListingStrategy, ExtractionStrategy, crawl_source
from runner.ingest.feeds import fetch_feed
from runner.ingest.http import PoliteFetcher
from runner.ingest.sources import load_sources
from runner.process.batch import run_in_batches
from runner.process.dedupe import dedupe_in_run, newest_first, split_existing
from runner.process.store import ingest_item

JOB_NAME = "discover"


def strategy_for(source: Source) -> ExtractionStrategy:
    if source.extractor == "playwright":
        return PlaywrightListingStrategy()
    return AnchorListingStrategy()


def collect_items(sources: list[Source], fetcher: PoliteFetcher, store, stats: dict) -> list[FeedItem]:
    items: list[FeedItem] = []
    for source in sources:
        started = time.monotonic()
        try:
            if source.kind == SourceKind.FEED:
                found = fetch_feed(source, fetcher, store)
            else:
                found = crawl_source(source, fetcher, store, strategy_for(source))
        except FetchError as e:
            stats["source_errors"] += 1
            print(f"DISCOVER_SOURCE_FAIL source={source.key} error={e}", file=sys.stderr)
            continue
        except Exception as e:
            stats["source_errors"] += 1
            print(
                f"DISCOVER_SOURCE_FAIL source={source.key} err={type(e).__name__} msg={str(e)[:200]}",
                file=sys.stderr,
            )
            continue
        elapsed_ms = int((time.monotonic() - started) * 1000)
        print(f"DISCOVER_SOURCE source={source.key} items={len(found)} elapsed_ms={elapsed_ms}")
        stats["by_source"][source.key] = len(found)
        items.extend(found)
    return items


def ingest_items(
    items: list[FeedItem],
    store,
    llm,
    settings: Settings,
    report: RunReport,
    today: date | None = None,
) -> None:
    """Dedupe, existence check, cap and enrich+write. Shared by the feed/crawl and search runs."""
    stats = report.stats
    stats["raw"] = len(items)
    unique = dedupe_in_run(items)
    stats["unique"] = len(unique)
    fresh = split_existing(unique, store, report)
    stats["existing"] = sum(1 for r in report.results if r["status"] == "updated")
    selected = newest_first(fresh, settings.max_new_per_run)
    stats["new"] = len(selected)
    stats["deferred"] = len(fresh) - len(selected)
    print(
        f"DEDUPE raw={stats['raw']} unique={stats['unique']} existing={stats['existing']} "
        f"new={stats['new']} deferred={stats['deferred']}"
    )

    def worker(item: FeedItem) -> None:
        ingest_item(item, store, llm, report, today)

    run_in_batches(selected, worker, report, settings.enrich_batch_size)
    stats["created"] = sum(1 for r in report.results if r["status"] == "created")
    stats["skipped"] = len(report.skipped)


def run_discover(
    settings: Settings,
    store,
    llm=None,
    fetcher: PoliteFetcher | None = None,
    program_type: ProgramType | None = None,
    sources: list[Source] | None = None,
    today: date | None = None,
) -> dict:
    fetcher = fetcher or PoliteFetcher(timeout=settings.call_timeout, user_agent=settings.user_agent)
    if sources is None:
        sources = load_sources(settings.feeds_path, store, program_type)
    report = RunReport(stats={"sources": len(sources), "source_errors": 0, "by_source": {}})
    items = collect_items(sources, fetcher, store, report.stats)
    ingest_items(items, store, llm, settings, report, today)
    print(
        f"DISCOVER_DONE sources={len(sources)} created={report.stats['created']} "
        f"skipped={report.stats['skipped']} existing={report.stats['existing']}"
    )
    return report.as_dict()


def run_job(
    settings: Settings,
    program_type: ProgramType | None = None,
    store: OpportunityStore | None = None,
) -> dict:
    store = store or OpportunityStore(create_client(settings))
    llm = build_llm_client(settings)
    run_id = store.start_ingest_run(JOB_NAME)
    try:
        summary = run_discover(settings, store, llm, program_type=program_type)
    except Exception as e:
        store.finish_ingest_run(run_id, ok=False, stats={}, error=str(e)[:500])
        raise
    store.finish_ingest_run(run_id, ok=True, stats=summary["stats"])
    return summary


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--program-type", default="", help="PHD, INTERNSHIP, VISITING_RESEARCH or JOB")
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
