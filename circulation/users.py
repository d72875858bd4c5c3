import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import sqlite3
from typing import List, Optional

from circulation.config import settings
from circulation.database import ConnectionPool, fits_integer, to_db_time, utcnow
from circulation.errors import DuplicateEmail, InvalidCredentials, NotFound
from circulation.models import Role, User
from circulation.validators import EMAIL_RX, FormValidator, matches, min_chars, not_blank

logger = logging.getLogger(__name__)

_HASH_ALGORITHM = "pbkdf2_sha256"


def hash_password(password: str, iterations: Optional[int] = None) -> str:
    """``algorithm$iterations$salt$digest`` biçiminde tuzlu PBKDF2 özeti."""
    iterations = iterations or settings.password_hash_iterations
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "$".join([
        _HASH_ALGORITHM,
        str(iterations),
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(digest).decode("ascii"),
    ])


def verify_password(password: str, hashed: str) -> bool:
    try:
        algorithm, iterations, salt, digest = hashed.split("$")
        rounds = int(iterations)
        salt_bytes = base64.b64decode(salt, validate=True)
        expected = base64.b64decode(digest, validate=True)
    except (ValueError, binascii.Error):
        # bozuk saklanan özet asla eşleşmez
        return False
    if algorithm != _HASH_ALGORITHM or rounds < 1:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt_bytes, rounds)
    return hmac.compare_digest(candidate, expected)


class UserDirectory:
    """Kullanıcı hesapları, kimlik bilgileri ve roller."""

    def __init__(self, pool: ConnectionPool, password_min_length: Optional[int] = None,
                 hash_iterations: Optional[int] = None) -> None:
        self.pool = pool
        self.password_min_length = password_min_length or settings.password_min_length
        self.hash_iterations = hash_iterations or settings.password_hash_iterations
        # e-posta bilinmiyorsa bununla karşılaştırılır; iki hata da aynı sürede döner
        self._dummy_hash = hash_password(secrets.token_hex(8), self.hash_iterations)

    def insert(self, name: str, email: str, password: str, role: Role = Role.MEMBER) -> int:
        """Bir hesap oluştur. ``role`` aksini söylemedikçe yeni hesaplar üyedir."""
        form = FormValidator()
        form.check_field(not_blank(name), "name", "This field cannot be blank")
        form.check_field(not_blank(email), "email", "This field cannot be blank")
        form.check_field(matches((email or "").strip(), EMAIL_RX), "email", "This field must be a valid email address")
        form.check_field(not_blank(password), "password", "This field cannot be blank")
        form.check_field(min_chars(password, self.password_min_length), "password",
                         f"This field must be at least {self.password_min_length} characters long")
        form.raise_if_invalid()

        email = email.strip()
        hashed = hash_password(password, self.hash_iterations)
        with self.pool.connection() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (name, email, hashed_password, role, created_at) VALUES (?, ?, ?, ?, ?)",
                    (name.strip(), email, hashed, Role(role).value, to_db_time(utcnow())),
                )
            except sqlite3.IntegrityError as e:
                if "users.email" in str(e) or "users_uc_email" in str(e):
                    raise DuplicateEmail(email) from e
                raise
            user_id = cursor.lastrowid
        logger.info(f"User created: id={user_id} role={Role(role).value}")
        return user_id

    def authenticate(self, email: str, password: str) -> int:
        """Geçerli kimlik bilgileri için kullanıcı kimliğini döndür, aksi halde InvalidCredentials yükselt."""
        with self.pool.connection() as conn:
            row = conn.execute(
                "SELECT id, hashed_password FROM users WHERE email = ?", ((email or "").strip(),)
            ).fetchone()
        if row is None:
            verify_password(password or "", self._dummy_hash)
            raise InvalidCredentials()
        if not verify_password(password or "", row["hashed_password"]):
            raise InvalidCredentials()
        return row["id"]

    def exists(self, user_id: int) -> bool:
        with self.pool.connection() as conn:
            row = conn.execute("SELECT EXISTS(SELECT 1 FROM users WHERE id = ?)", (user_id,)).fetchone()
        return bool(row[0])

    def get(self, user_id: int) -> User:
        if not fits_integer(user_id):
            raise NotFound("User", user_id)
        with self.pool.connection() as conn:
            row = conn.execute(
                "SELECT id, name, email, role, created_at FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        if row is None:
            raise NotFound("User", user_id)
        return User.from_row(row)

    def get_role(self, user_id: int) -> Role:
        with self.pool.connection() as conn:
            row = conn.execute("SELECT role FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFound("User", user_id)
        return Role(row["role"])

    def compare_password(self, user_id: int, password: str) -> None:
        with self.pool.connection() as conn:
            row = conn.execute("SELECT hashed_password FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFound("User", user_id)
        if not verify_password(password or "", row["hashed_password"]):
            raise InvalidCredentials()

    def update_password(self, user_id: int, current_password: str, new_password: str) -> None:
        form = FormValidator()
        form.check_field(not_blank(current_password), "current_password", "This field cannot be blank")
        form.check_field(not_blank(new_password), "new_password", "This field cannot be blank")
        form.check_field(min_chars(new_password, self.password_min_length), "new_password",
                         f"This field must be at least {self.password_min_length} characters long")
        form.raise_if_invalid()

        self.compare_password(user_id, current_password)
        with self.pool.connection() as conn:
            conn.execute(
                "UPDATE users SET hashed_password = ? WHERE id = ?",
                (hash_password(new_password, self.hash_iterations), user_id),
            )
        logger.info(f"Password changed for user {user_id}")

    def promote_to_librarian(self, user_id: int) -> User:
        """Bir üyeyi kütüphaneci yap. Yöneticiler rollerini korur."""
        if not fits_integer(user_id):
            raise NotFound("User", user_id)
        with self.pool.connection() as conn:
            conn.execute(
                "UPDATE users SET role = ? WHERE id = ? AND role != ?",
                (Role.LIBRARIAN.value, user_id, Role.ADMIN.value),
            )
        user = self.get(user_id)
        logger.info(f"User {user_id} promoted, role is now {user.role.value}")
        return user

    def set_role(self, user_id: int, role: Role) -> User:
        """Herhangi bir rol ata; yönetim CLI'ı ilk yöneticiyi oluşturmak için kullanır."""
        with self.pool.connection() as conn:
            cursor = conn.execute("UPDATE users SET role = ? WHERE id = ?", (Role(role).value, user_id))
        if cursor.rowcount == 0:
            raise NotFound("User", user_id)
        return self.get(user_id)

    def find_by_email(self, email: str) -> User:
        with self.pool.connection() as conn:
            row = conn.execute(
                "SELECT id, name, email, role, created_at FROM users WHERE email = ?", ((email or "").strip(),)
            ).fetchone()
        if row is None:
            raise NotFound("User", email)
        return User.from_row(row)

    def list_users(self) -> List[User]:
        """Tüm kullanıcılar, en yenisi önce."""
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT id, name, email, role, created_at FROM users ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [User.from_row(row) for row in rows]
