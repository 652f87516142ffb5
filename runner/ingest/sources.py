import json
import sys
from pathlib import Path

from backend.errors import MalformedRecordError
from backend.models import ProgramType, Source


def load_json_sources(path: Path) -> list[Source]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as f:
        rows = json.load(f)
    sources = []
    for row in rows:
        try:
            sources.append(Source.from_row(row))
        except MalformedRecordError as e:
            print(f"SOURCE_MALFORMED path={path.name} {e}", file=sys.stderr)
    return sources


def load_sources(
    feeds_path: Path,
    store=None,
    program_type: ProgramType | None = None,
) -> list[Source]:
    """Bundled feeds plus the active rows of the sources table; a table row overrides a bundled key."""
    by_key: dict[str, Source] = {s.key: s for s in load_json_sources(feeds_path)}
    if store is not None:
        try:
            for source in store.list_sources(program_type):
                by_key[source.key] = source
        except Exception as e:
            print(f"SOURCES_TABLE_UNAVAILABLE error={str(e)[:200]}", file=sys.stderr)

    out = []
    for source in by_key.values():
        if not source.active:
            continue
        if program_type and source.program_type != program_type:
            continue
        out.append(source)
    return out
