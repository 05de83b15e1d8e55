import os

# ============================================================================
# TALLY CONNECTION
# ============================================================================

TALLY_URL = os.getenv("TALLY_URL", "http://localhost:9000")
TALLY_COMPANY = os.getenv("TALLY_COMPANY", "")
TALLY_FY_START = os.getenv("TALLY_FY_START", "20250401")
TALLY_FY_END = os.getenv("TALLY_FY_END", "20260331")
TALLY_TIMEOUT = int(os.getenv("TALLY_TIMEOUT", "45"))
TALLY_MAX_RETRIES = int(os.getenv("TALLY_MAX_RETRIES", "1"))

# ============================================================================
# SALES CACHE
# ============================================================================

SALES_CACHE_TTL = int(os.getenv("SALES_CACHE_TTL", "300"))  # 5 minutes
SALES_CACHE_MAX_ENTRIES = int(os.getenv("SALES_CACHE_MAX_ENTRIES", "100"))
SALES_PREFETCH_PAGES = int(os.getenv("SALES_PREFETCH_PAGES", "3"))
SALES_PAGE_SIZE = int(os.getenv("SALES_PAGE_SIZE", "50"))
SALES_ALLOWED_TYPES = frozenset(
    t.strip() for t in os.getenv("SALES_ALLOWED_TYPES", "Tax Invoice").split(",") if t.strip()
)

# ============================================================================
# LOGGING
# ============================================================================

LOG_DIR = os.getenv(
    "TALLY_LOG_DIR",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs"),
)
LOG_LEVEL = os.getenv("TALLY_LOG_LEVEL", "INFO")
