import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from circulation.config import settings
from circulation.errors import StorageError

logger = logging.getLogger(__name__)

# SQLite INTEGER işaretli 64 bitlik bir değerdir
SQLITE_MAX_INTEGER = 2 ** 63 - 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Zaman damgaları sözlük sırasıyla sıralansın diye ISO-8601 UTC metin olarak saklanır."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def fits_integer(value: int) -> bool:
    """``value`` bir SQLite INTEGER olarak bağlanabilir mi (satır kimlikleri, sayılar)."""
    return -SQLITE_MAX_INTEGER - 1 <= value <= SQLITE_MAX_INTEGER


def casefold(value: Optional[str]) -> Optional[str]:
    """Unicode büyük/küçük harf katlama; her bağlantıda ``casefold()`` olarak kaydedilir."""
    return value.casefold() if isinstance(value, str) else value


class ConnectionPool:
    """İstek işleyicileri arasında paylaşılan sabit boyutlu SQLite bağlantı havuzu.

    Bağlantılar autocommit modunda çalışır; çok ifadeli işler
    BEGIN/COMMIT/ROLLBACK'i yöneten ``transaction()`` üzerinden geçer.
    """

    def __init__(self, database_file: Optional[str] = None, size: Optional[int] = None,
                 busy_timeout_ms: Optional[int] = None) -> None:
        self.database_file = database_file or settings.database_file
        self.size = size or settings.database_pool_size
        self.busy_timeout_ms = busy_timeout_ms or settings.database_busy_timeout_ms
        self._pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=self.size)
        self._lock = threading.Lock()
        self._closed = False

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.database_file,
            timeout=self.busy_timeout_ms / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        # NOCASE yalnızca ASCII'yi katlar; başlık sıralaması ve arama tam Unicode katlama ister
        conn.create_function("casefold", 1, casefold, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)};")
        # WAL, ödünç işlemi yazma kilidini tutarken okuyucuların ilerlemesine izin verir
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageError(f"Connection pool for {self.database_file} is closed")
        try:
            return self._pool.get_nowait()
        except queue.Empty:
            return self._open()

    def release(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.rollback()
        with self._lock:
            if self._closed:
                conn.close()
                return
        try:
            self._pool.put_nowait(conn)
        except queue.Full:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Havuzdan bir bağlantı al; sqlite hataları StorageError olarak yükselir."""
        try:
            conn = self.acquire()
        except sqlite3.Error as e:
            logger.error(f"Could not open database {self.database_file}: {e}")
            raise StorageError(str(e)) from e
        try:
            yield conn
        except (sqlite3.Error, OverflowError) as e:
            logger.error(f"Database operation failed: {e}")
            raise StorageError(str(e)) from e
        finally:
            self.release(conn)

    @contextmanager
    def use(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Verilmişse çağıranın bağlantısını (ve işlemini) yeniden kullan."""
        if conn is not None:
            yield conn
            return
        with self.connection() as pooled:
            yield pooled

    def close(self) -> None:
        with self._lock:
            self._closed = True
        while True:
            try:
                self._pool.get_nowait().close()
            except queue.Empty:
                break


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """Bir bloğu ``conn`` üzerinde atomik olarak çalıştır.

    ``immediate`` SQLite'ın yazma kilidini BEGIN anında alır; böylece blok
    içindeki her okuma, commit'in uygulanacağı durumu zaten görür.
    """
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def create_tables(conn: sqlite3.Connection) -> None:
    """Veritabanında mevcut değilse gerekli tabloları oluşturur."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL COLLATE NOCASE,
            hashed_password TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'member'
                CHECK (role IN ('member', 'librarian', 'admin')),
            created_at TEXT NOT NULL,
            CONSTRAINT users_uc_email UNIQUE (email)
        );

        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            isbn TEXT NOT NULL,
            total_copies INTEGER NOT NULL CHECK (total_copies >= 0),
            available_copies INTEGER NOT NULL
                CHECK (available_copies >= 0 AND available_copies <= total_copies),
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS issues (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            issued_at TEXT NOT NULL,
            due_date TEXT NOT NULL,
            returned_at TEXT,
            FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        -- oturumlar bağlı oldukları hesaptan uzun yaşayabilir, burada yabancı anahtar yok
        CREATE TABLE IF NOT EXISTS sessions (
            token TEXT PRIMARY KEY,
            user_id INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);
        CREATE INDEX IF NOT EXISTS idx_issues_user ON issues(user_id, returned_at);
        CREATE INDEX IF NOT EXISTS idx_issues_book ON issues(book_id, returned_at);
        CREATE INDEX IF NOT EXISTS idx_issues_issued_at ON issues(issued_at DESC);
        CREATE INDEX IF NOT EXISTS idx_sessions_expiry ON sessions(expires_at);

        -- (kitap, kullanıcı) başına en fazla bir aktif ödünç
        CREATE UNIQUE INDEX IF NOT EXISTS uq_issues_active
            ON issues(book_id, user_id) WHERE returned_at IS NULL;
    """)


def initialize_database(pool: ConnectionPool) -> None:
    """Havuzun veritabanı dosyasında şemayı oluşturur."""
    with pool.connection() as conn:
        create_tables(conn)
    logger.info(f"Database ready at {pool.database_file}")
