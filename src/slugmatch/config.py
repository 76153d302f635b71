SUGGEST_MAX: int = 5

# /* ~~~ longest URL we are willing to compare (common browser limit) ~~~ */
MAX_DIST: int = 2083
MAX_URL_LENGTH: int = MAX_DIST

# rapidfuzz handles anything, but we keep the fast path for short inputs only
FAST_LEVENSHTEIN_MAX_BYTES: int = 255

# N-gram extraction
NGRAM_SIZES: tuple[int, ...] = (2, 3)
NGRAM_MAX_INPUT: int = 500

# /* ~~~ n-gram cache tuning ~~~ */
CACHE_LOAD_LIMIT: int = 1000          # above this many entries use the range query
COVERAGE_RATIO_TTL: int = 300         # seconds a computed coverage ratio is trusted
COVERAGE_VERSION_TTL: int = 86_400
COUNT_RATIO_MIN: float = 0.4
RANGE_LOW_FACTOR: float = 0.4
RANGE_HIGH_FACTOR: float = 2.5
USAGE_STATS_RESET_DAYS: int = 30

# Prefilter admission gates
NGRAM_MIN_CACHE_ENTRIES: int = 50
NGRAM_MIN_COVERAGE_RATIO: float = 0.8
NGRAM_PREFILTER_THRESHOLD: float = 0.3
NGRAM_PREFILTER_MAX_CANDIDATES: int = 500

# /* ~~~ secondary n-gram pass over bucket survivors ~~~ */
NGRAM_SECONDARY_FILTER: bool = True
NGRAM_SECONDARY_MIN_CANDIDATES: int = 50
NGRAM_SECONDARY_THRESHOLD: float = 0.4
NGRAM_SECONDARY_MAX_CANDIDATES: int = 100

# Length buckets
BATCH_SIZE: int = 1000
NEEDED_PER_SUGGESTION: int = 5
NEEDED_CAP: int = 100
PUSHDOWN_SLACK: float = 1.1

# Scoring
LAZY_SCORE_THRESHOLD: float = 95.0
POSTS_SCORE_MULTIPLIER: int = 3
SCORE_DECIMALS: int = 4

# /* ~~~ URL normalization ~~~ */
SEPARATORS: tuple[str, ...] = ("-", "_", ".", "~", "%20")
IMAGE_SEPARATORS: tuple[str, ...] = ("-", "_", "~", "%20")
IMAGE_EXTENSIONS: tuple[str, ...] = (
    ".jpg", ".jpeg", ".gif", ".png", ".tif", ".tiff", ".bmp", ".pdf",
    ".jif", ".jp2", ".jpx", ".j2k", ".j2c", ".pcd",
)

# Rebuild
REBUILD_BATCH_SIZE: int = 100
REBUILD_LOCK_NAME: str = "ngram_cache_rebuild"
REBUILD_LOCK_LEASE: int = 600

# Suggestion cache
SUGGESTION_TTL: int = 3600
