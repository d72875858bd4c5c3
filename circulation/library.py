from datetime import timedelta
from typing import Optional

from circulation.access import AccessControlGate
from circulation.config import Settings, settings as default_settings
from circulation.database import ConnectionPool, initialize_database
from circulation.ledger import InventoryLedger
from circulation.orchestrator import BorrowingOrchestrator
from circulation.sessions import SessionStore
from circulation.tracker import IssueTracker
from circulation.users import UserDirectory


class Library:
    """Ödünç bileşenlerini tek bir veritabanı dosyası etrafında birbirine bağlar."""

    def __init__(self, db_file: Optional[str] = None, settings: Optional[Settings] = None) -> None:
        self.settings = (settings or default_settings).with_database(db_file)
        self.pool = ConnectionPool(
            self.settings.database_file,
            size=self.settings.database_pool_size,
            busy_timeout_ms=self.settings.database_busy_timeout_ms,
        )
        # Her başlangıçta şemanın var olduğundan emin ol
        initialize_database(self.pool)

        self.ledger = InventoryLedger(self.pool)
        self.tracker = IssueTracker(self.pool)
        self.users = UserDirectory(
            self.pool,
            password_min_length=self.settings.password_min_length,
            hash_iterations=self.settings.password_hash_iterations,
        )
        self.sessions = SessionStore(self.pool, lifetime=timedelta(hours=self.settings.session_lifetime_hours))
        self.gate = AccessControlGate(self.sessions, self.users)
        self.orchestrator = BorrowingOrchestrator(
            self.pool, self.ledger, self.tracker,
            loan_period=timedelta(days=self.settings.loan_period_days),
        )

    def close(self) -> None:
        self.pool.close()
