import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from circulation.database import ConnectionPool, fits_integer, to_db_time, utcnow
from circulation.errors import NotFound
from circulation.models import Issue

logger = logging.getLogger(__name__)

_ISSUE_SELECT = """
    SELECT i.id, i.book_id, i.user_id, b.title AS book_title, u.name AS user_name,
           i.issued_at, i.due_date, i.returned_at
    FROM issues i
    JOIN books b ON b.id = i.book_id
    JOIN users u ON u.id = i.user_id
"""


class IssueTracker:
    """Ödünç olaylarının geçmişi ve durumu."""

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    def issue(self, book_id: int, user_id: int, due_date: datetime,
              conn: Optional[sqlite3.Connection] = None, issued_at: Optional[datetime] = None) -> int:
        with self.pool.use(conn) as c:
            cursor = c.execute(
                "INSERT INTO issues (book_id, user_id, issued_at, due_date) VALUES (?, ?, ?, ?)",
                (book_id, user_id, to_db_time(issued_at or utcnow()), to_db_time(due_date)),
            )
        return cursor.lastrowid

    def return_issue(self, issue_id: int, user_id: int, conn: Optional[sqlite3.Connection] = None,
                     returned_at: Optional[datetime] = None) -> Issue:
        """``user_id`` kullanıcısına ait aktif bir ödüncü kapat.

        Böyle bir ödünç yoksa, başkasına aitse ya da zaten iade edildiyse
        NotFound yükseltir.
        """
        if not fits_integer(issue_id):
            raise NotFound("Issue", issue_id)
        with self.pool.use(conn) as c:
            cursor = c.execute(
                "UPDATE issues SET returned_at = ? WHERE id = ? AND user_id = ? AND returned_at IS NULL",
                (to_db_time(returned_at or utcnow()), issue_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("Issue", issue_id)
            return self.get(issue_id, conn=c)

    def get(self, issue_id: int, conn: Optional[sqlite3.Connection] = None) -> Issue:
        if not fits_integer(issue_id):
            raise NotFound("Issue", issue_id)
        with self.pool.use(conn) as c:
            row = c.execute(f"{_ISSUE_SELECT} WHERE i.id = ?", (issue_id,)).fetchone()
        if row is None:
            raise NotFound("Issue", issue_id)
        return Issue.from_row(row)

    def get_active_by_user(self, user_id: int) -> List[Issue]:
        """Bir kullanıcının aktif ödünçleri, en yenisi önce."""
        with self.pool.connection() as conn:
            rows = conn.execute(
                f"{_ISSUE_SELECT} WHERE i.user_id = ? AND i.returned_at IS NULL ORDER BY i.issued_at DESC, i.id DESC",
                (user_id,),
            ).fetchall()
        return [Issue.from_row(row) for row in rows]

    def get_active_by_book(self, book_id: int) -> List[Issue]:
        with self.pool.connection() as conn:
            rows = conn.execute(
                f"{_ISSUE_SELECT} WHERE i.book_id = ? AND i.returned_at IS NULL ORDER BY i.issued_at, i.id",
                (book_id,),
            ).fetchall()
        return [Issue.from_row(row) for row in rows]

    def get_active_issue(self, book_id: int, user_id: int, conn: Optional[sqlite3.Connection] = None) -> Issue:
        """``user_id`` elindeki ``book_id`` aktif ödüncü; yoksa NotFound."""
        with self.pool.use(conn) as c:
            row = c.execute(
                f"{_ISSUE_SELECT} WHERE i.book_id = ? AND i.user_id = ? AND i.returned_at IS NULL",
                (book_id, user_id),
            ).fetchone()
        if row is None:
            raise NotFound("Issue", f"book={book_id},user={user_id}")
        return Issue.from_row(row)

    def get_all(self) -> List[Issue]:
        """Tüm ödünç geçmişi, en yenisi önce."""
        with self.pool.connection() as conn:
            rows = conn.execute(f"{_ISSUE_SELECT} ORDER BY i.issued_at DESC, i.id DESC").fetchall()
        return [Issue.from_row(row) for row in rows]
