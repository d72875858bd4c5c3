import logging
import sqlite3
from typing import List, Optional

from circulation.database import ConnectionPool, casefold, fits_integer, to_db_time, transaction, utcnow
from circulation.errors import NotFound
from circulation.models import Book
from circulation.validators import MAX_COPIES, FormValidator, not_blank

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, title, author, isbn, total_copies, available_copies, created_at"


class InventoryLedger:
    """Kitap kayıtları ve kopya sayıları.

    Kopya sayıları yalnızca ``decrement_available`` ve
    ``increment_available`` ile yazılır; ödünç düzenleyicisi bunları kendi
    işlemi içinde çağırır.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    # ------------------------- Katalog ------------------------- #
    def insert(self, title: str, author: str, isbn: str, total_copies: int) -> int:
        form = FormValidator()
        form.check_field(not_blank(title), "title", "Title cannot be blank")
        form.check_field(not_blank(author), "author", "Author cannot be blank")
        form.check_field(not_blank(isbn), "isbn", "ISBN cannot be blank")
        form.check_field(
            isinstance(total_copies, int) and 1 <= total_copies <= MAX_COPIES, "copies", "Must be a number >= 1"
        )
        form.raise_if_invalid()

        with self.pool.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO books (title, author, isbn, total_copies, available_copies, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (title.strip(), author.strip(), isbn.strip(), total_copies, total_copies, to_db_time(utcnow())),
            )
            book_id = cursor.lastrowid
        logger.info(f"Book added: id={book_id} isbn={isbn.strip()} copies={total_copies}")
        return book_id

    def get(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> Book:
        if not fits_integer(book_id):
            raise NotFound("Book", book_id)
        with self.pool.use(conn) as c:
            row = c.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise NotFound("Book", book_id)
        return Book.from_row(row)

    def list_books(self) -> List[Book]:
        """Başlığa göre sıralı tüm kitaplar."""
        with self.pool.connection() as conn:
            rows = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY casefold(title), id").fetchall()
        return [Book.from_row(row) for row in rows]

    def search(self, text: str) -> List[Book]:
        """Başlığı, yazarı veya ISBN'i ``text`` içeren kitaplar (büyük/küçük harf duyarsız)."""
        needle = casefold(text)
        with self.pool.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_BOOK_COLUMNS} FROM books
                WHERE instr(casefold(title), ?) OR instr(casefold(author), ?) OR instr(casefold(isbn), ?)
                ORDER BY casefold(title), id
                """,
                (needle, needle, needle),
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    def delete(self, book_id: int) -> None:
        """Bir kitabı ve ödünç geçmişini sil. Bilinmeyen kimlikler bir şey yapmaz."""
        if not fits_integer(book_id):
            return
        with self.pool.connection() as conn:
            with transaction(conn):
                removed_issues = conn.execute("DELETE FROM issues WHERE book_id = ?", (book_id,)).rowcount
                removed = conn.execute("DELETE FROM books WHERE id = ?", (book_id,)).rowcount
        if removed:
            logger.info(f"Book deleted: id={book_id} (with {removed_issues} issue records)")

    def count(self) -> int:
        with self.pool.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]

    # ------------------------- Kopya sayıları ------------------------- #
    def decrement_available(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Kalan varsa raftan bir kopya al. Gerçekleşip gerçekleşmediğini döndürür."""
        with self.pool.use(conn) as c:
            cursor = c.execute(
                "UPDATE books SET available_copies = available_copies - 1 WHERE id = ? AND available_copies > 0",
                (book_id,),
            )
        return cursor.rowcount == 1

    def increment_available(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Bir kopyayı geri koy. Sayıyı asla ``total_copies`` üzerine çıkarmaz."""
        with self.pool.use(conn) as c:
            cursor = c.execute(
                """
                UPDATE books SET available_copies = available_copies + 1
                WHERE id = ? AND available_copies < total_copies
                """,
                (book_id,),
            )
        return cursor.rowcount == 1
