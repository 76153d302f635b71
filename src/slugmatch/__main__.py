from __future__ import annotations
import argparse, json, sys
from slugmatch.config import SUGGEST_MAX, REBUILD_BATCH_SIZE
from slugmatch.engine import MatchEngine
from slugmatch.loader import load_permalinks
from slugmatch.models import ItemKey, MatchOptions


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="404 URL suggestions (MatchEngine-backed)")
    p.add_argument("--db", default="memory://", help="Store DSN: sqlite:///path or memory://")
    p.add_argument("--import", dest="import_path", default=None,
                   help="Permalink export to load first (id, type, url; .tsv or .csv)")
    p.add_argument("--rebuild", action="store_true", help="Rebuild the n-gram cache before querying")
    p.add_argument("--batch-size", type=int, default=REBUILD_BATCH_SIZE, help="Rebuild batch size")
    p.add_argument("--health", action="store_true", help="Print n-gram cache health")
    p.add_argument("--stats", action="store_true", help="Print cache and matching counters after the queries")
    p.add_argument("-k", type=int, default=SUGGEST_MAX, help="Suggestions to return")
    p.add_argument("--exclude", action="append", default=[], help="Item key to never suggest, e.g. 12|1")
    p.add_argument("--exclude-regex", action="append", default=[], help="Drop suggestions whose path matches")
    p.add_argument("--custom-404", default=None, help="Item key of the site's own 404 page")
    p.add_argument("--home", default="", help="Site sub-directory, e.g. /blog")
    p.add_argument("--no-tags", action="store_true")
    p.add_argument("--no-cats", action="store_true")
    p.add_argument("--q", action="append", default=[], help="Path to match (repeatable)")
    p.add_argument("--repl", action="store_true", help="Interactive loop after init")
    p.add_argument("--json", action="store_true", help="Emit JSON rows")
    p.add_argument("--verbose", action="store_true")

    args = p.parse_args(argv)

    try:
        options = MatchOptions(
            suggest_max=args.k,
            exclude_pages=[ItemKey.parse(k) for k in args.exclude],
            custom_404_page=ItemKey.parse(args.custom_404) if args.custom_404 else None,
            regex_exclusions=args.exclude_regex,
            home_directory=args.home,
        )
    except ValueError as e:
        p.error(str(e))

    eng = MatchEngine.from_dsn(args.db, options=options, verbose=args.verbose)
    try:
        if args.import_path:
            n = eng.provider.store.bulk_upsert(load_permalinks(args.import_path))
            print(f"[import] {n:,} permalinks")

        if args.rebuild:
            stats = eng.rebuild_cache(args.batch_size)
            if stats is None:
                print("[rebuild] another rebuild holds the lock; skipped")
            else:
                print(f"[rebuild] processed={stats.processed:,} success={stats.success:,} failed={stats.failed:,}")

        if args.health:
            h = eng.cache_health()
            if args.json:
                print(json.dumps(h._asdict()))
            else:
                print(f"initialized={h.initialized} coverage={h.coverage_ratio:.2f} entries={h.total_entries:,}")

        def run_query(q: str):
            result = eng.find_matches(q, include_categories=not args.no_cats, include_tags=not args.no_tags)
            if args.json:
                rows = [{"key": str(k), "score": s, "url": eng.provider.permalink(k.item_id, k.item_type)}
                        for k, s in result.scores.items()]
                print(json.dumps({"row_type": result.row_type, "matches": rows}, ensure_ascii=False, indent=2))
            else:
                if not result.scores:
                    print("(no matches)"); return
                print("#  Score     Key        URL")
                for i, (k, s) in enumerate(result.scores.items(), 1):
                    url = eng.provider.permalink(k.item_id, k.item_type) or ""
                    print(f"{i:<2} {s:<9.4f} {str(k):<10} {url}")

        for q in args.q:
            run_query(q)

        if args.repl:
            print("Type a broken path (empty line to exit).")
            while True:
                try:
                    q = input("> ").strip()
                except (EOFError, KeyboardInterrupt):
                    break
                if not q:
                    break
                run_query(q)

        if args.stats:
            stats = eng.stats()
            if args.json:
                print(json.dumps(stats))
            else:
                for name, value in stats.items():
                    print(f"[stats] {name}={value}")

        return 0
    finally:
        eng.shutdown()


if __name__ == "__main__":
    sys.exit(main())
