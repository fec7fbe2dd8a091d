import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Store settings
    store_backend: str = os.getenv("LIBRARY_STORE", "memory").lower()  # memory | sqlite
    db_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    store_latency: float = float(os.getenv("STORE_LATENCY", "0"))  # seconds per store call
    seed_sample_data: bool = os.getenv("SEED_SAMPLE_DATA", "True").lower() in ("true", "1", "yes")

    # Session settings
    session_header: str = os.getenv("SESSION_HEADER", "X-Session-Token")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Management System")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
