# slugmatch/engine.py
from __future__ import annotations

import os
import re
import time
import logging
from typing import Callable, Dict, List, Optional

from . import config as CFG
from .buckets import LengthBucketDistanceFilter
from .corpus import Candidate, CorpusAdapter, PermalinkProvider, Resolver, adapter_for
from .DB.api import Storage, SuggestionCache, make_store
from .errors import CacheUnavailableError
from .models import (
    CacheHealth, ItemKey, ItemType, MatchOptions, MatchResult, PerformanceCounters, RebuildStats,
)
from .ngram_cache import NGramCache
from .normalize import RequestedPath, ngram_source, normalize_request, remove_home_directory, url_path
from .prefilter import CandidatePrefilter, gate_failure
from .scorer import score_candidates

log = logging.getLogger(__name__)


class MatchEngine:
    """
    Orchestration layer that glues together:
      - n-gram cache + Dice prefilter (NGramCache, CandidatePrefilter),
      - length-bucket pruning over the corpus (LengthBucketDistanceFilter),
      - early-terminating Levenshtein scoring (scorer.score_candidates).

    Public API (used by the CLI and by whatever serves the 404 page):
      * find_matches(path, ...):  ranked suggestions for a broken URL
      * cached_matches(path):     last stored suggestions, if still fresh
      * invalidate_item(id, type): content changed; refresh its cache entry
      * cache_health():           read-only signal for an external scheduler
      * stats():                  counters and cache sizes for monitoring
      * rebuild_cache(...):       full n-gram rebuild under the store lock
      * shutdown():               close underlying resources

    Storage DSNs (via slugmatch.DB.api.make_store):
      - "sqlite:///path/to/site.sqlite"
      - "memory://"
    """

    # ------------- lifecycle -------------

    def __init__(
        self,
        cache: NGramCache,
        provider: PermalinkProvider,
        *,
        options: Optional[MatchOptions] = None,
        prefilter: Optional[CandidatePrefilter] = None,
        bucket_filter: Optional[LengthBucketDistanceFilter] = None,
        suggestions: Optional[SuggestionCache] = None,
        counters: Optional[PerformanceCounters] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.options = options or MatchOptions()
        self.counters = counters or PerformanceCounters()
        self._cache = cache
        self._provider = provider
        self._log = logger or log
        self._prefilter = prefilter or CandidatePrefilter(cache, clock=clock, logger=logger)
        self._buckets = bucket_filter or LengthBucketDistanceFilter(
            provider, counters=self.counters, logger=logger)
        self._suggestions = suggestions
        self._storage: Optional[Storage] = None
        self._regexes = self._compile_exclusions(self.options.regex_exclusions)

    # /* ~~~ Open stores from a DSN and wire everything up ~~~ */
    @classmethod
    def from_dsn(
        cls,
        dsn: str = "memory://",
        *,
        options: Optional[MatchOptions] = None,
        resolver: Optional[Resolver] = None,
        on_rebuild_needed: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
        verbose: bool = False,
    ) -> "MatchEngine":
        if verbose:
            logging.basicConfig(level=logging.INFO)
            os.environ["SLUGMATCH_VERBOSE"] = "1"

        log.info("Initializing stores: %s", dsn)
        storage = make_store(dsn, clock=clock)
        provider = PermalinkProvider(storage.corpus, resolver)
        cache = NGramCache(storage.ngrams, provider, clock=clock)
        prefilter = CandidatePrefilter(cache, on_rebuild_needed=on_rebuild_needed, clock=clock)
        eng = cls(cache, provider, options=options, prefilter=prefilter,
                  suggestions=storage.suggestions, clock=clock)
        eng._storage = storage
        log.info("Engine ready: %d permalinks, %d n-gram entries",
                 provider.count(), storage.ngrams.count())
        return eng

    @property
    def cache(self) -> NGramCache:
        return self._cache

    @property
    def provider(self) -> PermalinkProvider:
        return self._provider

    # ------------- query -------------

    # /* ~~~ Ranked suggestions for a broken URL; empty on store failure ~~~ */
    def find_matches(
        self,
        requested_path: str,
        include_categories: bool = True,
        include_tags: bool = True,
    ) -> MatchResult:
        query = normalize_request(requested_path)
        row_type = ItemType.IMAGE.label if query.is_image else ItemType.POST.label
        self._cache.begin_request()
        self.counters.reset()
        try:
            return self._find_matches(query, row_type, include_categories, include_tags)
        except CacheUnavailableError:
            self._log.exception("Store unavailable while matching %r; returning no suggestions", requested_path)
            return MatchResult({}, row_type)

    def cached_matches(self, requested_path: str) -> Optional[MatchResult]:
        if self._suggestions is None:
            return None
        try:
            hit = self._suggestions.get(requested_path)
        except CacheUnavailableError:
            self._log.exception("Suggestion cache unavailable")
            return None
        return hit.top(self.options.suggest_max) if hit is not None else None

    def _find_matches(self, query: RequestedPath, row_type: str,
                      include_categories: bool, include_tags: bool) -> MatchResult:
        opts = self.options
        desired = opts.max_cache_count

        primary = ItemType.IMAGE if query.is_image else ItemType.POST
        scores = self._match_corpus(query, adapter_for(primary), desired)

        if query.is_image:
            # images never mix with tags/categories
            ranked = dict(sorted(scores.items(), key=lambda kv: kv[1], reverse=True))
            return self._finish(query.raw, MatchResult(ranked, row_type))

        if include_tags:
            scores.update(self._match_corpus(query, adapter_for(ItemType.TAG), desired))
        if include_categories:
            scores.update(self._match_corpus(query, adapter_for(ItemType.CATEGORY), desired))

        scores = self._remove_excluded(scores)
        ordered = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        ordered = self._remove_regex_excluded(ordered, desired)
        return self._finish(query.raw, MatchResult(dict(ordered[:desired]), row_type))

    def _finish(self, raw: str, result: MatchResult) -> MatchResult:
        keep = result.top(self.options.max_cache_count)
        if self._suggestions is not None:
            try:
                self._suggestions.put(raw, keep)
            except CacheUnavailableError:
                self._log.exception("Could not store suggestions for %r", raw)
        return keep.top(self.options.suggest_max)

    # /* ~~~ prefilter -> length buckets -> scorer, for one corpus ~~~ */
    def _match_corpus(self, query: RequestedPath, adapter: CorpusAdapter, desired: int) -> Dict[ItemKey, float]:
        only_ids: Optional[List[int]] = None
        if adapter.item_type == ItemType.POST:
            only_ids = self._prefilter_ids(query)

        likely = self._buckets.likely_matches(
            query, adapter, self.options.suggest_max,
            home_directory=self.options.home_directory,
            only_ids=only_ids,
        )
        candidates = likely.candidates
        if only_ids is None and adapter.item_type != ItemType.IMAGE and CFG.NGRAM_SECONDARY_FILTER:
            candidates = self._refine(query, adapter, candidates)

        self._log.debug("Found %d likely %s.", len(candidates), adapter.label())
        return score_candidates(query, candidates, desired, adapter,
                                counters=self.counters, logger=self._log)

    def _prefilter_ids(self, query: RequestedPath) -> Optional[List[int]]:
        reason = gate_failure(self._cache)
        if reason is not None:
            self._log.debug("N-gram prefilter skipped (%s)", reason)
            return None

        # same form the cache was indexed from
        sims = self._prefilter.find_similar_candidates(
            ngram_source(query.raw), CFG.NGRAM_PREFILTER_THRESHOLD, CFG.NGRAM_PREFILTER_MAX_CANDIDATES, ItemType.POST)
        if not sims:
            # zero hits on a healthy cache is ambiguous; let the full scan decide
            self._log.debug("N-gram prefilter skipped (gate D: zero results): falling back to full scan")
            return None

        self._log.debug("N-gram prefilter: restricted to %d candidates", len(sims))
        return list(sims)

    def _refine(self, query: RequestedPath, adapter: CorpusAdapter,
                candidates: Dict[int, Candidate]) -> Dict[int, Candidate]:
        before = len(candidates)
        if before <= CFG.NGRAM_SECONDARY_MIN_CANDIDATES or gate_failure(self._cache) is not None:
            return candidates

        sims = self._prefilter.find_similar_candidates(
            ngram_source(query.raw), CFG.NGRAM_SECONDARY_THRESHOLD,
            min(before, CFG.NGRAM_SECONDARY_MAX_CANDIDATES), adapter.item_type)
        if not sims:
            return candidates

        kept = [i for i in candidates if i in sims]
        kept.sort(key=lambda i: sims[i], reverse=True)
        self._log.debug("N-gram filter (secondary): %d -> %d candidates (%.1f%% reduction)",
                        before, len(kept), 100 * (1 - len(kept) / before))
        return {i: candidates[i] for i in kept}

    # ------------- exclusions -------------

    def _remove_excluded(self, scores: Dict[ItemKey, float]) -> Dict[ItemKey, float]:
        drop = set(self.options.exclude_pages)
        if self.options.custom_404_page is not None:
            drop.add(self.options.custom_404_page)
        if not drop:
            return scores
        return {k: v for k, v in scores.items() if k not in drop}

    def _remove_regex_excluded(self, ordered: List[tuple], enough: int) -> List[tuple]:
        """Walk best-first; stop testing once `enough` survivors are confirmed."""
        if not self._regexes:
            return ordered
        out: List[tuple] = []
        kept = 0
        for i, (key, score) in enumerate(ordered):
            path = self._exclusion_path(key)
            if path is not None:
                hit = next((rx for rx in self._regexes if rx.search(path)), None)
                if hit is not None:
                    self._log.debug("Regex excluded suggestion %s (path %r, pattern %r)", key, path, hit.pattern)
                    continue
            out.append((key, score))
            kept += 1
            if kept >= enough:
                out.extend(ordered[i + 1:])
                break
        return out

    def _exclusion_path(self, key: ItemKey) -> Optional[str]:
        url = self._provider.permalink(key.item_id, key.item_type)
        if not url or not url.strip():
            self._log.debug("No URL for %s; regex exclusions not applied", key)
            return None
        path = remove_home_directory(url_path(url), self.options.home_directory)
        if not path.startswith("/"):
            path = "/" + path
        return path

    def _compile_exclusions(self, patterns: List[str]) -> List[re.Pattern]:
        out: List[re.Pattern] = []
        for p in patterns:
            if not p or not p.strip():
                continue
            try:
                out.append(re.compile(p))
            except re.error as e:
                self._log.error("Ignoring invalid exclusion pattern %r: %s", p, e)
        return out

    # ------------- maintenance -------------

    def invalidate_item(self, item_id: int, item_type: ItemType) -> None:
        """A post/tag/category was saved, deleted or re-slugged."""
        self._cache.update_items([ItemKey(int(item_id), ItemType(item_type))])
        if self._suggestions is not None:
            self._suggestions.clear()

    def cache_health(self) -> CacheHealth:
        self._cache.begin_request()
        return self._cache.health()

    def stats(self) -> dict:
        """Counters here cover the last find_matches call only."""
        out = self._cache.stats()
        out.update(
            levenshtein_calls=self.counters.levenshtein_calls,
            pages_considered=self.counters.pages_considered,
            efficiency_percent=self.counters.efficiency_percent,
            prefilter_queries=self._prefilter.usage.total_queries,
        )
        out.update(self._prefilter.usage.averages())
        return out

    def rebuild_cache(self, batch_size: int = CFG.REBUILD_BATCH_SIZE) -> Optional[RebuildStats]:
        stats = self._cache.rebuild_all(batch_size)
        if stats is not None and self._suggestions is not None:
            self._suggestions.clear()
        return stats

    # ------------- teardown -------------

    # /* ~~~ Close underlying resources (DB handles, etc.) ~~~ */
    def shutdown(self) -> None:
        try:
            if self._storage:
                self._storage.close()
        finally:
            self._storage = None
            log.info("Engine shutdown complete")
