"""Ödünç verme akışı.

Düzenleyici, kopya sayılarının ve ödünç durumunun tek yazarıdır. Her
protokol tek bir ``BEGIN IMMEDIATE`` işlemi olarak çalışır: SQLite yazma
kilidini BEGIN anında verir, böylece stok ve mükerrer kontrolleri ile
yazmalar aynı kaydedilmiş durumu görür. Korumalı azaltma yine de ödünç
oluşturmanın tek kapısıdır.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from circulation.access import Caller, Tier, authorize
from circulation.config import settings
from circulation.database import ConnectionPool, transaction, utcnow
from circulation.errors import AlreadyIssued, Forbidden, NoCopiesAvailable, NotFound
from circulation.ledger import InventoryLedger
from circulation.models import Issue
from circulation.tracker import IssueTracker

logger = logging.getLogger(__name__)


class BorrowingOrchestrator:
    def __init__(self, pool: ConnectionPool, ledger: InventoryLedger, tracker: IssueTracker,
                 loan_period: Optional[timedelta] = None,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.pool = pool
        self.ledger = ledger
        self.tracker = tracker
        self.loan_period = loan_period or timedelta(days=settings.loan_period_days)
        self.clock = clock

    def issue_book(self, caller: Caller, book_id: int) -> Issue:
        """``book_id`` kitabının bir kopyasını çağırana ödünç ver."""
        authorize(caller, Tier.AUTHENTICATED)
        user_id = caller.user_id

        with self.pool.connection() as conn:
            with transaction(conn):
                book = self.ledger.get(book_id, conn=conn)
                if book.available_copies < 1:
                    raise NoCopiesAvailable(book_id)

                try:
                    self.tracker.get_active_issue(book_id, user_id, conn=conn)
                except NotFound:
                    pass
                else:
                    raise AlreadyIssued(book_id, user_id)

                now = self.clock()
                due_date = now + self.loan_period
                if not self.ledger.decrement_available(book_id, conn=conn):
                    raise NoCopiesAvailable(book_id)
                issue_id = self.tracker.issue(book_id, user_id, due_date, conn=conn, issued_at=now)
                issue = self.tracker.get(issue_id, conn=conn)

        logger.info(f"Book issued: book={book_id} user={user_id} issue={issue_id} due={due_date.date()}")
        return issue

    def return_book(self, caller: Caller, issue_id: int) -> Issue:
        """Çağıranın aktif ödünçlerinden birini kapat ve kopyayı geri koy."""
        authorize(caller, Tier.AUTHENTICATED)
        user_id = caller.user_id

        with self.pool.connection() as conn:
            with transaction(conn):
                try:
                    issue = self.tracker.return_issue(issue_id, user_id, conn=conn, returned_at=self.clock())
                except NotFound:
                    raise Forbidden(f"Issue {issue_id} is not an active issue of this user") from None
                if not self.ledger.increment_available(issue.book_id, conn=conn):
                    logger.warning(f"Copy count for book {issue.book_id} was already at total on return of issue {issue_id}")

        logger.info(f"Book returned: book={issue.book_id} user={user_id} issue={issue_id}")
        return issue
