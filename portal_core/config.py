# portal_core/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import logging
from typing import List

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    # --- Supabase Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None # ANON key usually
    SUPABASE_SERVICE_KEY: str | None = None # SERVICE_ROLE key

    # --- Storage Backend ---
    # "supabase" in production, "local" for development and tests
    STORAGE_BACKEND: str = "supabase"
    LOCAL_STORAGE_DIR: str = "var/storage"
    LOCAL_PUBLIC_BASE_URL: str = "http://localhost:8010/files"

    # --- Upload Defaults ---
    STORAGE_CACHE_CONTROL: str = "3600"
    # Buckets where server-side copy is unavailable; moves fall back to download + re-upload
    STORAGE_COPY_UNSUPPORTED_BUCKETS: List[str] = ["featured-images"]

    # --- Service URLs ---
    UPLOAD_SERVICE_URL: str = "http://localhost:8010"

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        extra = 'ignore'

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("Portal_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("storage3").setLevel(logging.WARNING); logging.getLogger("watchfiles").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if settings.STORAGE_BACKEND not in ("supabase", "local"):
    logger.warning(f"Unknown STORAGE_BACKEND '{settings.STORAGE_BACKEND}', falling back to 'supabase'.")
    settings.STORAGE_BACKEND = "supabase"
if settings.STORAGE_BACKEND == "supabase":
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY: logger.warning("Supabase URL/Key missing.")
    if not settings.SUPABASE_SERVICE_KEY: logger.warning("Supabase Service Key missing. Uploads will fail.")
else:
    logger.info(f"Using local storage backend: Dir={settings.LOCAL_STORAGE_DIR}, Public URL={settings.LOCAL_PUBLIC_BASE_URL}")
logger.info(f"Storage Config: Cache-Control={settings.STORAGE_CACHE_CONTROL}, Copy-unsupported buckets={settings.STORAGE_COPY_UNSUPPORTED_BUCKETS}")
