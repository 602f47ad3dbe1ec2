"""Default values shared by config, stages, and the CLI."""

from __future__ import annotations


SUPPORTED_CONFIG_SUFFIXES = (".yaml", ".yml", ".json")
JSON_INDENT = 2

# Stage switches.
DEFAULT_CRAWLER_ENABLED = True
DEFAULT_SCRAPER_ENABLED = True
DEFAULT_EMBEDDER_ENABLED = True

# Per-stage concurrency ceilings.
DEFAULT_CRAWL_CONCURRENCY = 4
DEFAULT_SCRAPE_CONCURRENCY = 4
DEFAULT_EMBED_CONCURRENCY = 2

# HTTP.
DEFAULT_USER_AGENT = "AidWatch/1.0"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 5.0
DEFAULT_RESPECT_ROBOTS = True
ROBOTS_TIMEOUT_CAP_SECONDS = 10.0

# Candidate selection.
DEFAULT_MAX_AGE_HOURS = 6.0
DEFAULT_BATCH_LIMIT = 500
DEFAULT_REINDEX_STRATEGY = "incremental"
REINDEX_STRATEGIES = ("incremental", "full")

# Change detection / scraping.
DEFAULT_NORMALIZE_HTML = True
DEFAULT_SCRAPE_SOFT_CHANGED = False
DEFAULT_SCRAPE_MIN_TEXT_LEN = 400
DEFAULT_HTML_FEATURES = "lxml"
DEFAULT_AJAX_FALLBACK_ENABLED = True
DEFAULT_AJAX_BASE_URL = "https://www.navarra.es/es/tramites/on"
DEFAULT_EXTRACTOR_NAME = "rules(navarra.es)"

# Embedding.
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_API_URL = "https://api.openai.com/v1"
DEFAULT_EMBEDDING_TOKEN_BUDGET = 8000
DEFAULT_EMBEDDING_BUDGET_SHRINK = 0.7
DEFAULT_EMBEDDING_MAX_ATTEMPTS = 3
DEFAULT_EMBEDDING_TIMEOUT_SECONDS = 30.0
DEFAULT_EMBED_BACKLOG = True

# Vector store.
DEFAULT_VECTOR_PREFIX = "ayuda"
DEFAULT_KEEP_HISTORY = False

# Audits.
DEFAULT_CRAWL_AUDIT_ENABLED = True
DEFAULT_SCRAPE_AUDIT_ENABLED = True
DEFAULT_EMBED_AUDIT_ENABLED = True

DEFAULT_DRY_RUN = False
