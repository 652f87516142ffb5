import argparse
import json
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from backend.config import DEFAULT_FEEDS_PATH, load_settings
from backend.db import OpportunityStore, create_client
from backend.errors import ConfigurationError, MalformedRecordError
from backend.models import Source


def load_json(path: Path):
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def normalize_source(item: dict) -> dict | None:
    try:
        source = Source.from_row(item)
    except MalformedRecordError as e:
        print(f"SEED_SKIP key={item.get('key')} {e}", file=sys.stderr)
        return None
    return source.model_dump(mode="json", exclude={"id"})


def chunked(rows: list[dict], size: int = 100):
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--sources", help="Path to a sources JSON list (default: bundled feeds.json)")
    parser.add_argument("--dry-run", action="store_true", help="Validate and print, do not write")
    args = parser.parse_args()

    path = Path(args.sources) if args.sources else DEFAULT_FEEDS_PATH
    rows = [r for r in (normalize_source(item) for item in load_json(path)) if r]
    if not rows:
        print("No sources to seed.")
        return 0
    if args.dry_run:
        print(json.dumps(rows, indent=2))
        return 0

    try:
        store = OpportunityStore(create_client(load_settings()))
    except ConfigurationError as e:
        print(f"CONFIG_ERROR {e}", file=sys.stderr)
        return 2

    seeded = 0
    for batch in chunked(rows, size=100):
        store.upsert_sources(batch)
        seeded += len(batch)

    print(f"Seeded/updated {seeded} sources.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
