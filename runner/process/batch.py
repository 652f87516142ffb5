import sys
from concurrent.futures import ThreadPoolExecutor, as_completed

from backend.models import FeedItem, RunReport


def batches(items: list, size: int) -> list[list]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


def run_in_batches(items: list[FeedItem], worker, report: RunReport, batch_size: int = 3) -> None:
    """
    Runs worker(item) for every item, batch_size at a time. A batch finishes
    before the next one starts; an exception from one worker becomes a skip
    entry and leaves its siblings alone.
    """
    for index, batch in enumerate(batches(items, batch_size), start=1):
        print(f"BATCH_START index={index} size={len(batch)}")
        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = {pool.submit(worker, item): item for item in batch}
            for fut in as_completed(futures):
                item = futures[fut]
                try:
                    fut.result()
                except Exception as e:
                    print(
                        f"ITEM_FAIL link={item.link} err={type(e).__name__} msg={str(e)[:200]}",
                        file=sys.stderr,
                    )
                    report.add_skip(item.link, "ai_or_upsert_error", str(e) or type(e).__name__)
