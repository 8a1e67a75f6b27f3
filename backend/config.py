import os
from pathlib import Path

# Base directory is the directory containing this file (backend/)
BASE_DIR = Path(__file__).resolve().parent

# Environment
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# Database
DB_PATH = Path(os.getenv("DB_PATH", str(BASE_DIR / "trips.db")))

# Blob storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").strip().lower()
if STORAGE_BACKEND not in {"local", "s3"}:
    raise RuntimeError("Invalid STORAGE_BACKEND. Supported values: local, s3.")

STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(BASE_DIR / "storage")))
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "/files").rstrip("/")

AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET", "").strip()
AWS_REGION = os.getenv("AWS_REGION", "eu-south-1").strip()
AWS_S3_ENDPOINT = os.getenv("AWS_S3_ENDPOINT", "").strip() or None
AWS_PUBLIC_BASE_URL = os.getenv("AWS_PUBLIC_BASE_URL", "").strip().rstrip("/") or None

if STORAGE_BACKEND == "s3" and not AWS_S3_BUCKET:
    raise RuntimeError("STORAGE_BACKEND=s3 requires AWS_S3_BUCKET to be set.")

# Upload limits
MAX_ARCHIVE_MB = int(os.getenv("MAX_ARCHIVE_MB", "100"))
MAX_ARCHIVE_BYTES = MAX_ARCHIVE_MB * 1024 * 1024

# Batch processing
ARCHIVE_DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("ARCHIVE_DOWNLOAD_TIMEOUT_SECONDS", "60"))
TRIP_PERSIST_TIMEOUT_SECONDS = float(os.getenv("TRIP_PERSIST_TIMEOUT_SECONDS", "60"))
BATCH_WORKERS = max(1, int(os.getenv("BATCH_WORKERS", "2")))
BATCH_QUEUE_SIZE = max(1, int(os.getenv("BATCH_QUEUE_SIZE", "100")))
BATCH_JOB_MAX_AGE_HOURS = int(os.getenv("BATCH_JOB_MAX_AGE_HOURS", "24"))


def _parse_origins(raw: str) -> list[str]:
    values = [value.strip() for value in raw.split(",")]
    return [value for value in values if value]


FRONTEND_ORIGINS = _parse_origins(
    os.getenv(
        "FRONTEND_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
    )
)

if "*" in FRONTEND_ORIGINS:
    raise RuntimeError("Insecure CORS configuration: wildcard origins are not allowed.")

# Ensure directories exist
if STORAGE_BACKEND == "local":
    STORAGE_DIR.mkdir(parents=True, exist_ok=True)
