import os
from dotenv import load_dotenv

load_dotenv()

SERVICE_NAME = os.environ.get("SERVICE_NAME", "subtitle-translate-api")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# storage
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./jobs.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
GCS_BUCKET_NAME = os.environ.get("GCS_BUCKET_NAME", "")
GOOGLE_APPLICATION_CREDENTIALS_JSON = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS_JSON")

# auth
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
TOKEN_CLOCK_SKEW_SEC = int(os.environ.get("TOKEN_CLOCK_SKEW_SEC", "60"))
# token subjects or emails allowed to read the failed-message log
OPERATOR_IDS = frozenset(x.strip().lower() for x in os.environ.get("OPERATOR_IDS", "").split(",") if x.strip())

# engine
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_BASE_URL = os.environ.get("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
ENGINE_TIMEOUT_SEC = float(os.environ.get("ENGINE_TIMEOUT_SEC", "90"))
ENGINE_MAX_OUTPUT_TOKENS = int(os.environ.get("ENGINE_MAX_OUTPUT_TOKENS", "8192"))

# handles and cache
UPLOAD_URL_TTL_SEC = int(os.environ.get("UPLOAD_URL_TTL_SEC", "900"))
DOWNLOAD_URL_TTL_SEC = int(os.environ.get("DOWNLOAD_URL_TTL_SEC", "3600"))
CACHE_TTL_ACTIVE_SEC = int(os.environ.get("CACHE_TTL_ACTIVE_SEC", "5"))
CACHE_TTL_TERMINAL_SEC = int(os.environ.get("CACHE_TTL_TERMINAL_SEC", "3600"))

# queue
QUEUE_NAME = os.environ.get("QUEUE_NAME", "translation-queue")
QUEUE_MAX_ATTEMPTS = int(os.environ.get("QUEUE_MAX_ATTEMPTS", "3"))
QUEUE_BACKOFF_BASE_SEC = float(os.environ.get("QUEUE_BACKOFF_BASE_SEC", "1.0"))
QUEUE_LEASE_SEC = float(os.environ.get("QUEUE_LEASE_SEC", "120"))
QUEUE_COMPLETED_MAX_AGE_SEC = int(os.environ.get("QUEUE_COMPLETED_MAX_AGE_SEC", str(2 * 3600)))
QUEUE_COMPLETED_MAX_COUNT = int(os.environ.get("QUEUE_COMPLETED_MAX_COUNT", "10"))
QUEUE_FAILED_MAX_AGE_SEC = int(os.environ.get("QUEUE_FAILED_MAX_AGE_SEC", str(24 * 3600)))
QUEUE_FAILED_MAX_COUNT = int(os.environ.get("QUEUE_FAILED_MAX_COUNT", "10"))

# worker
WORKER_CONCURRENCY = int(os.environ.get("WORKER_CONCURRENCY", "1"))
WORKER_IDLE_SLEEP_SEC = float(os.environ.get("WORKER_IDLE_SLEEP_SEC", "1.0"))
