# assessment_sync/utils/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env file before defining settings
load_dotenv()

class Settings(BaseSettings):
    app_name: str = "Assessment Sync API"
    app_version: str = "0.3.0"
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # --- Admin server ---
    database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./admin.db")
    recordings_dir: str = os.getenv("RECORDINGS_DIR", "./recordings") # one sub-directory per candidate session
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8080"))

    # --- Candidate device ---
    candidate_database_url: str = os.getenv("CANDIDATE_DATABASE_URL", "sqlite+aiosqlite:///./candidate.db")
    candidate_recordings_dir: str = os.getenv("CANDIDATE_RECORDINGS_DIR", "./candidate_recordings")
    device_config_path: str = os.getenv("DEVICE_CONFIG_PATH", "./device_config.json")
    sync_server_url: str | None = os.getenv("SYNC_SERVER_URL")

    # Sync worker tuning
    sync_interval_seconds: float = 30.0
    sync_batch_size: int = 10
    sync_max_attempts: int = 3
    sync_request_timeout_seconds: float = 30.0
    # When False, 4xx responses (other than 408/429) dead-letter an item on the first failure
    sync_retry_client_errors: bool = False

    # Lower value = more urgent
    test_result_priority: int = 1
    recording_priority: int = 5

settings = Settings()

# --- Sanity checks on worker tuning ---
if settings.sync_batch_size < 1:
    raise ValueError("SYNC_BATCH_SIZE must be at least 1")
if settings.sync_max_attempts < 1:
    raise ValueError("SYNC_MAX_ATTEMPTS must be at least 1")
if settings.sync_interval_seconds <= 0 or settings.sync_request_timeout_seconds <= 0:
    raise ValueError("SYNC_INTERVAL_SECONDS and SYNC_REQUEST_TIMEOUT_SECONDS must be positive")
