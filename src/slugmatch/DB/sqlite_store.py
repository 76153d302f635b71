# slugmatch/DB/sqlite_store.py
from __future__ import annotations
import functools
import json
import logging
import sqlite3
import time
from typing import Callable, Iterable, List, Optional, Sequence

from .api import CorpusStore, NGramStore, SuggestionCache, Storage
from ..config import SUGGESTION_TTL
from ..errors import CacheUnavailableError
from ..models import ItemType, NGramCacheEntry, PermalinkRow, MatchResult
from ..ngrams import NGramSet
from ..normalize import cleaned_slug

log = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS permalinks (
  item_id INTEGER NOT NULL,
  item_type INTEGER NOT NULL,
  url TEXT,
  slug_length INTEGER NOT NULL DEFAULT 0,
  PRIMARY KEY (item_id, item_type)
);
CREATE INDEX IF NOT EXISTS idx_permalinks_slug ON permalinks(item_type, slug_length);

CREATE TABLE IF NOT EXISTS ngram_cache (
  item_id INTEGER NOT NULL,
  item_type INTEGER NOT NULL,
  url TEXT NOT NULL,
  url_normalized TEXT NOT NULL,
  ngrams TEXT NOT NULL,
  ngram_count INTEGER NOT NULL,
  last_updated REAL NOT NULL,
  PRIMARY KEY (item_id, item_type)
);
CREATE INDEX IF NOT EXISTS idx_ngram_count ON ngram_cache(ngram_count);

CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS locks (
  name TEXT PRIMARY KEY,
  owner TEXT NOT NULL,
  expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS suggestions (
  path TEXT PRIMARY KEY,
  payload TEXT NOT NULL,
  expires_at REAL NOT NULL
);
"""

_NGRAM_COLS = "item_id, item_type, url, url_normalized, ngrams, ngram_count, last_updated"


def _guarded(fn):
    """Surface driver failures as CacheUnavailableError so callers handle one type."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except sqlite3.Error as e:
            raise CacheUnavailableError(f"{fn.__qualname__}: {e}") from e
    return wrapper


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


class SQLiteCorpusStore(CorpusStore):
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ---- Create / Update ----
    @_guarded
    def upsert(self, row: PermalinkRow) -> None:
        self.bulk_upsert([row])

    @_guarded
    def bulk_upsert(self, rows: Iterable[PermalinkRow]) -> int:
        data = [
            (int(r.item_id), int(r.item_type), r.url, len(cleaned_slug(r.url)) if r.url else 0)
            for r in rows
        ]
        self.conn.executemany(
            "INSERT OR REPLACE INTO permalinks(item_id, item_type, url, slug_length) VALUES (?,?,?,?)",
            data,
        )
        self.conn.commit()
        return len(data)

    # ---- Read ----
    @_guarded
    def get(self, item_id: int, item_type: ItemType) -> Optional[PermalinkRow]:
        r = self.conn.execute(
            "SELECT item_id, item_type, url, slug_length FROM permalinks WHERE item_id=? AND item_type=?",
            (int(item_id), int(item_type)),
        ).fetchone()
        return _row(r) if r else None

    @_guarded
    def get_batch(
        self,
        item_type: ItemType,
        after_id: int,
        batch_size: int,
        *,
        query_lengths: Sequence[int] = (),
        max_distance: Optional[int] = None,
        only_ids: Optional[Iterable[int]] = None,
    ) -> List[PermalinkRow]:
        sql = "SELECT item_id, item_type, url, slug_length FROM permalinks WHERE item_type=? AND item_id>?"
        vals: list = [int(item_type), int(after_id)]

        if max_distance is not None and query_lengths:
            sql += " AND (" + " OR ".join("slug_length BETWEEN ? AND ?" for _ in query_lengths) + ")"
            for q in query_lengths:
                vals += [q - max_distance, q + max_distance]

        if only_ids is not None:
            ids = sorted({int(i) for i in only_ids if int(i) > after_id})
            if not ids:
                return []
            sql += f" AND item_id IN ({_placeholders(len(ids))})"
            vals += ids

        sql += " ORDER BY item_id LIMIT ?"
        vals.append(int(batch_size))
        return [_row(r) for r in self.conn.execute(sql, vals)]

    @_guarded
    def page(self, offset: int, limit: int, item_types: Optional[Sequence[ItemType]] = None) -> List[PermalinkRow]:
        sql = "SELECT item_id, item_type, url, slug_length FROM permalinks"
        vals: list = []
        if item_types is not None:
            sql += f" WHERE item_type IN ({_placeholders(len(item_types))})"
            vals += [int(t) for t in item_types]
        sql += " ORDER BY item_type, item_id LIMIT ? OFFSET ?"
        vals += [int(limit), int(offset)]
        return [_row(r) for r in self.conn.execute(sql, vals)]

    @_guarded
    def count(self, item_types: Optional[Sequence[ItemType]] = None) -> int:
        if item_types is None:
            return int(self.conn.execute("SELECT COUNT(*) FROM permalinks").fetchone()[0])
        return int(self.conn.execute(
            f"SELECT COUNT(*) FROM permalinks WHERE item_type IN ({_placeholders(len(item_types))})",
            [int(t) for t in item_types],
        ).fetchone()[0])

    # ---- Delete ----
    @_guarded
    def delete(self, item_id: int, item_type: ItemType) -> bool:
        cur = self.conn.execute("DELETE FROM permalinks WHERE item_id=? AND item_type=?",
                                (int(item_id), int(item_type)))
        self.conn.commit()
        return cur.rowcount > 0

    def close(self) -> None:
        self.conn.close()


def _row(r) -> PermalinkRow:
    return PermalinkRow(int(r[0]), ItemType(r[1]), r[2], int(r[3]))


class SQLiteNGramStore(NGramStore):
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @_guarded
    def upsert(self, entry: NGramCacheEntry) -> None:
        self.conn.execute(
            f"INSERT OR REPLACE INTO ngram_cache({_NGRAM_COLS}) VALUES (?,?,?,?,?,?,?)",
            (
                int(entry.item_id), int(entry.item_type), entry.original_url, entry.normalized_url,
                json.dumps(entry.ngrams.to_dict()), int(entry.ngram_count), float(entry.last_updated),
            ),
        )
        self.conn.commit()

    @_guarded
    def delete(self, item_id: int, item_type: ItemType) -> bool:
        cur = self.conn.execute("DELETE FROM ngram_cache WHERE item_id=? AND item_type=?",
                                (int(item_id), int(item_type)))
        self.conn.commit()
        return cur.rowcount > 0

    @_guarded
    def get(self, item_id: int, item_type: ItemType) -> Optional[NGramCacheEntry]:
        rows = self.conn.execute(
            f"SELECT {_NGRAM_COLS} FROM ngram_cache WHERE item_id=? AND item_type=?",
            (int(item_id), int(item_type)),
        ).fetchall()
        entries = _decode(rows)
        return entries[0] if entries else None

    @_guarded
    def count(self, item_type: Optional[ItemType] = None) -> int:
        if item_type is None:
            return int(self.conn.execute("SELECT COUNT(*) FROM ngram_cache").fetchone()[0])
        return int(self.conn.execute("SELECT COUNT(*) FROM ngram_cache WHERE item_type=?",
                                     (int(item_type),)).fetchone()[0])

    @_guarded
    def read_count_range(
        self,
        low: int,
        high: int,
        *,
        descending: bool,
        limit: int,
        offset: int = 0,
        item_type: Optional[ItemType] = None,
    ) -> List[NGramCacheEntry]:
        if limit <= 0:
            return []
        sql = f"SELECT {_NGRAM_COLS} FROM ngram_cache WHERE ngram_count >= ? AND ngram_count <= ?"
        vals: list = [int(low), int(high)]
        if item_type is not None:
            sql += " AND item_type=?"
            vals.append(int(item_type))
        order = "DESC" if descending else "ASC"
        sql += f" ORDER BY ngram_count {order}, item_type, item_id LIMIT ? OFFSET ?"
        vals += [int(limit), int(offset)]
        return _decode(self.conn.execute(sql, vals).fetchall())

    @_guarded
    def read_all(self, item_type: Optional[ItemType] = None) -> List[NGramCacheEntry]:
        if item_type is None:
            rows = self.conn.execute(
                f"SELECT {_NGRAM_COLS} FROM ngram_cache ORDER BY item_id, item_type").fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT {_NGRAM_COLS} FROM ngram_cache WHERE item_type=? ORDER BY item_id",
                (int(item_type),)).fetchall()
        return _decode(rows)

    @_guarded
    def last_updated(self) -> Optional[float]:
        v = self.conn.execute("SELECT MAX(last_updated) FROM ngram_cache").fetchone()[0]
        return float(v) if v is not None else None

    @_guarded
    def truncate(self) -> None:
        self.conn.execute("DELETE FROM ngram_cache")
        self.conn.commit()

    # ---- meta ----
    @_guarded
    def get_meta(self, key: str) -> Optional[str]:
        r = self.conn.execute("SELECT value FROM meta WHERE key=?", (key,)).fetchone()
        return r[0] if r else None

    @_guarded
    def set_meta(self, key: str, value: str) -> None:
        self.conn.execute("INSERT OR REPLACE INTO meta(key, value) VALUES (?,?)", (key, value))
        self.conn.commit()

    @_guarded
    def delete_meta(self, key: str) -> None:
        self.conn.execute("DELETE FROM meta WHERE key=?", (key,))
        self.conn.commit()

    # ---- locks ----
    @_guarded
    def acquire_lock(self, name: str, owner: str, lease: float, now: float) -> bool:
        with self.conn:
            self.conn.execute("DELETE FROM locks WHERE name=? AND expires_at <= ?", (name, now))
            cur = self.conn.execute(
                "INSERT OR IGNORE INTO locks(name, owner, expires_at) VALUES (?,?,?)",
                (name, owner, now + lease),
            )
        return cur.rowcount == 1

    @_guarded
    def release_lock(self, name: str, owner: str) -> None:
        self.conn.execute("DELETE FROM locks WHERE name=? AND owner=?", (name, owner))
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


def _decode(rows) -> List[NGramCacheEntry]:
    out: List[NGramCacheEntry] = []
    for r in rows:
        try:
            ngrams = NGramSet.from_dict(json.loads(r[4]))
        except (ValueError, TypeError) as e:
            # one corrupt row must not take down the whole read
            log.error("Corrupt n-gram JSON for item %s|%s: %s", r[0], r[1], e)
            continue
        out.append(NGramCacheEntry(
            item_id=int(r[0]),
            item_type=ItemType(r[1]),
            original_url=r[2],
            normalized_url=r[3],
            ngrams=ngrams,
            ngram_count=int(r[5]),
            last_updated=float(r[6]),
        ))
    return out


class SQLiteSuggestionCache(SuggestionCache):
    def __init__(self, conn: sqlite3.Connection, *, clock: Callable[[], float] = time.time,
                 ttl: float = SUGGESTION_TTL) -> None:
        self.conn = conn
        self._clock = clock
        self._ttl = ttl

    @_guarded
    def get(self, path: str) -> Optional[MatchResult]:
        r = self.conn.execute("SELECT payload, expires_at FROM suggestions WHERE path=?", (path,)).fetchone()
        if r is None:
            return None
        if r[1] <= self._clock():
            self.conn.execute("DELETE FROM suggestions WHERE path=?", (path,))
            self.conn.commit()
            return None
        return MatchResult.from_json(r[0])

    @_guarded
    def put(self, path: str, result: MatchResult) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO suggestions(path, payload, expires_at) VALUES (?,?,?)",
            (path, result.to_json(), self._clock() + self._ttl),
        )
        self.conn.commit()

    @_guarded
    def clear(self) -> None:
        self.conn.execute("DELETE FROM suggestions")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


def open_sqlite(path: str, *, clock: Callable[[], float] = time.time) -> Storage:
    """One connection, three views over it. Closing any of them closes the file."""
    try:
        conn = sqlite3.connect(path)
        conn.executescript(_SCHEMA)
    except sqlite3.Error as e:
        raise CacheUnavailableError(f"cannot open {path}: {e}") from e
    return Storage(SQLiteCorpusStore(conn), SQLiteNGramStore(conn), SQLiteSuggestionCache(conn, clock=clock))
