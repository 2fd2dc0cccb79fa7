import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./zootel.db")

# Alternative slot search
ALTERNATIVE_SEARCH_DAYS = int(os.getenv("ALTERNATIVE_SEARCH_DAYS", "14"))
MAX_ALTERNATIVES = int(os.getenv("MAX_ALTERNATIVES", "10"))
# Threads used to resolve dates in parallel (1 = sequential)
ALTERNATIVE_SEARCH_WORKERS = int(os.getenv("ALTERNATIVE_SEARCH_WORKERS", "1"))

# Notifications - reminder lead times in hours, e.g. "24,2"
REMINDER_OFFSETS_HOURS = [
    int(h) for h in os.getenv("REMINDER_OFFSETS_HOURS", "24,2").split(",") if h.strip()
]
FOLLOW_UP_DELAY_HOURS = int(os.getenv("FOLLOW_UP_DELAY_HOURS", "24"))

# Check-and-insert retries after a serialization conflict
BOOKING_CONFLICT_RETRIES = int(os.getenv("BOOKING_CONFLICT_RETRIES", "2"))
BOOKING_RETRY_BACKOFF_SECONDS = float(os.getenv("BOOKING_RETRY_BACKOFF_SECONDS", "0.05"))

# Background jobs (notifications, payment signals) run in the ARQ worker
JOB_ENQUEUE_TIMEOUT_SECONDS = float(os.getenv("JOB_ENQUEUE_TIMEOUT_SECONDS", "5"))
SIDE_EFFECT_MAX_TRIES = int(os.getenv("SIDE_EFFECT_MAX_TRIES", "3"))
SIDE_EFFECT_BACKOFF_SECONDS = float(os.getenv("SIDE_EFFECT_BACKOFF_SECONDS", "5"))

# Deterministic ids for local debugging; leave unset in production
_id_seed = os.getenv("ID_GENERATOR_SEED")
ID_GENERATOR_SEED = int(_id_seed) if _id_seed else None

# Frontend base URL, used for CORS defaults
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
