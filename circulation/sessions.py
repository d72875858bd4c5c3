import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from circulation.config import settings
from circulation.database import ConnectionPool, to_db_time, utcnow

logger = logging.getLogger(__name__)


class SessionStore:
    """Opak rastgele bir belirteçle anahtarlanan sunucu tarafı oturumlar."""

    def __init__(self, pool: ConnectionPool, lifetime: Optional[timedelta] = None,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.pool = pool
        self.lifetime = lifetime or timedelta(hours=settings.session_lifetime_hours)
        self.clock = clock

    def create(self, user_id: int) -> str:
        now = self.clock()
        token = secrets.token_urlsafe(32)
        with self.pool.connection() as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (token, user_id, to_db_time(now), to_db_time(now + self.lifetime)),
            )
        return token

    def renew(self, old_token: Optional[str], user_id: int) -> str:
        """``user_id`` için yeni bir belirteç ver ve eskisini sil (giriş, kayıt)."""
        if old_token:
            self.destroy(old_token)
        return self.create(user_id)

    def get_user_id(self, token: str) -> Optional[int]:
        with self.pool.connection() as conn:
            row = conn.execute(
                "SELECT user_id FROM sessions WHERE token = ? AND expires_at > ?",
                (token, to_db_time(self.clock())),
            ).fetchone()
        return row["user_id"] if row else None

    def destroy(self, token: str) -> bool:
        with self.pool.connection() as conn:
            return conn.execute("DELETE FROM sessions WHERE token = ?", (token,)).rowcount > 0

    def purge_expired(self) -> int:
        with self.pool.connection() as conn:
            removed = conn.execute(
                "DELETE FROM sessions WHERE expires_at <= ?", (to_db_time(self.clock()),)
            ).rowcount
        if removed:
            logger.info(f"Purged {removed} expired sessions")
        return removed
