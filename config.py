import os

# sqlite:// (no path) gives a shared in-memory database, handy for tests
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./readly.db")

# Server stores UTC; streak days are bucketed in the user's local time.
TZ_OFFSET_HOURS = float(os.getenv("TZ_OFFSET_HOURS", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SEED_BADGES = os.getenv("SEED_BADGES", "1") not in ("0", "false", "no")

PORT = int(os.getenv("PORT", 8000))

# identity used when a request carries no X-User-Id header
DEFAULT_USER_ID = "me"
