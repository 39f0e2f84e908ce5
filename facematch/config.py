"""
Configuration settings for Face Match Application
"""
import os
from pathlib import Path

# Base directories
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"

# =============================================================================
# Database Configuration
# =============================================================================
# SQLite (aiosqlite) by default, PostgreSQL via postgresql+asyncpg://...
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{DATA_DIR / 'faces.db'}"
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

# =============================================================================
# Matching Configuration
# =============================================================================
# LBP histogram vectors produced by the capture device
VECTOR_DIM = 256

# Cosine similarity threshold (higher = stricter)
DEFAULT_THRESHOLD = 0.9

# =============================================================================
# Access Log Retention
# =============================================================================
# Count cap, enforced after every write
LOG_RETENTION_COUNT = 1000

# Age cap, enforced by the periodic prune
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "30"))

# Hours between periodic prunes (0 disables the background task)
LOG_PRUNE_INTERVAL_HOURS = float(os.getenv("LOG_PRUNE_INTERVAL_HOURS", "24"))

LOG_PAGE_DEFAULT = 50
LOG_PAGE_MAX = 100

# =============================================================================
# Export
# =============================================================================
EXPORT_FORMAT = "LBP-256"
EXPORT_VERSION = "1.0"
EXPORT_FILENAME = "face_db.json"

# =============================================================================
# API Configuration
# =============================================================================
# Shared secret expected in the X-API-Key header
API_KEY = os.getenv("API_KEY", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

API_TITLE = "Face Match API"
API_DESCRIPTION = """
Face identity matching over pre-computed feature vectors.

## Features
- **Enroll**: Register or update a named 256-dim face vector
- **Search**: Find the closest enrolled identity for a query vector
- **Recognize**: Search and mark the access as a recognition event
- **Batch / Export / Clear**: Bulk management of the face database
- **Logs / Stats**: Audit trail with bounded retention

## Matching
- Cosine similarity, linear scan over every enrolled face
- Default threshold 0.9
"""
API_VERSION = "1.0.0"
