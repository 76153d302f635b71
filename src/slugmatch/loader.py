from __future__ import annotations
import csv
import logging
import os
from typing import Iterable, Iterator, List

from .models import ItemType, PermalinkRow

log = logging.getLogger(__name__)

PROGRESS_EVERY_ROWS = 10_000


# Progress logging (set SLUGMATCH_VERBOSE=1 to enable)
def _verbose() -> bool:
    return os.environ.get("SLUGMATCH_VERBOSE") == "1"


def _delimiter_for(path: str) -> str:
    return "\t" if path.lower().endswith((".tsv", ".tab", ".txt")) else ","


def _iter_records(lines: Iterable[str], delimiter: str) -> Iterator[tuple[int, list[str]]]:
    for line_no, rec in enumerate(csv.reader(lines, delimiter=delimiter), 1):
        if not rec or all(not c.strip() for c in rec):
            continue
        if rec[0].lstrip().startswith("#"):
            continue
        yield line_no, rec


def parse_permalinks(lines: Iterable[str], delimiter: str = "\t") -> List[PermalinkRow]:
    """
    Rows of `id, type, url` (url may be empty = not resolved yet).
    A header row is skipped; malformed rows are logged and dropped.
    """
    rows: List[PermalinkRow] = []
    verbose = _verbose()
    for line_no, rec in _iter_records(lines, delimiter):
        if line_no == 1 and not rec[0].strip().isdigit():
            continue   # header
        if len(rec) < 2:
            log.warning("line %d: expected id, type, url; got %r", line_no, rec)
            continue
        try:
            item_id = int(rec[0].strip())
            item_type = ItemType.parse(rec[1])
        except ValueError as e:
            log.warning("line %d: %s", line_no, e)
            continue
        if item_id <= 0:
            log.warning("line %d: item id must be positive, got %d", line_no, item_id)
            continue
        url = rec[2].strip() if len(rec) > 2 else ""
        rows.append(PermalinkRow(item_id, item_type, url or None))

        if verbose and len(rows) % PROGRESS_EVERY_ROWS == 0:
            print(f"[load] {len(rows):,} permalinks…")
    return rows


def load_permalinks(path: str) -> List[PermalinkRow]:
    """Read a permalink export (.tsv/.txt tab separated, anything else comma separated)."""
    with open(path, "r", encoding="utf-8", errors="ignore", newline="") as f:
        rows = parse_permalinks(f, _delimiter_for(path))
    log.info("Loaded %d permalinks from %s", len(rows), path)
    return rows
