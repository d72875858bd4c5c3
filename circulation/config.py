import os
from dataclasses import dataclass, replace
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Veritabanı ayarları
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_pool_size: int = int(os.getenv("DATABASE_POOL_SIZE", "5"))
    database_busy_timeout_ms: int = int(os.getenv("DATABASE_BUSY_TIMEOUT_MS", "5000"))

    # Oturum ayarları
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "session")
    session_lifetime_hours: int = int(os.getenv("SESSION_LIFETIME_HOURS", "12"))
    session_cookie_secure: bool = _env_bool("SESSION_COOKIE_SECURE", "False")

    # Ödünç kuralları
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))

    # Güvenlik ayarları
    password_min_length: int = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
    password_hash_iterations: int = int(os.getenv("PASSWORD_HASH_ITERATIONS", "240000"))

    # Uygulama ayarları
    app_name: str = os.getenv("APP_NAME", "Library Circulation")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_bool("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def with_database(self, database_file: Optional[str]) -> "Settings":
        """Başka bir veritabanı dosyasını gösteren bir ayar kopyası döndür."""
        if not database_file:
            return self
        return replace(self, database_file=database_file)


settings = Settings()
