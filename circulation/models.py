from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from circulation.database import from_db_time


class Role(str, Enum):
    """Kullanıcı rolü. Yetkiye göre sıralı: admin > librarian > member."""

    MEMBER = "member"
    LIBRARIAN = "librarian"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank


_ROLE_RANKS = {Role.MEMBER: 0, Role.LIBRARIAN: 1, Role.ADMIN: 2}


class Book:
    """Bir katalog kaydı ve kopya sayıları."""

    def __init__(self, id: int, title: str, author: str, isbn: str, total_copies: int,
                 available_copies: int, created_at: datetime | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.total_copies = total_copies
        self.available_copies = available_copies
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            isbn=row["isbn"],
            total_copies=row["total_copies"],
            available_copies=row["available_copies"],
            created_at=from_db_time(row["created_at"]),
        )


@dataclass(frozen=True)
class Active:
    """Hâlâ ödünçte olan kayıt."""

    name = "active"


@dataclass(frozen=True)
class Returned:
    """``at`` anında iade edilen kayıt."""

    at: datetime
    name = "returned"


IssueStatus = Union[Active, Returned]


class Issue:
    """Tek bir ödünç olayı. ``book_title``/``user_name`` gösterim için birleştirilir."""

    def __init__(self, id: int, book_id: int, user_id: int, issued_at: datetime, due_date: datetime,
                 status: IssueStatus, book_title: str = "", user_name: str = "") -> None:
        self.id = id
        self.book_id = book_id
        self.user_id = user_id
        self.issued_at = issued_at
        self.due_date = due_date
        self.status = status
        self.book_title = book_title
        self.user_name = user_name

    @property
    def is_active(self) -> bool:
        return isinstance(self.status, Active)

    @property
    def returned_at(self) -> Optional[datetime]:
        return self.status.at if isinstance(self.status, Returned) else None

    def is_overdue(self, now: datetime) -> bool:
        return self.is_active and self.due_date < now

    def to_dict(self) -> dict:
        returned_at = self.returned_at
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "book_title": self.book_title,
            "user_name": self.user_name,
            "issued_at": self.issued_at.isoformat(),
            "due_date": self.due_date.isoformat(),
            "status": self.status.name,
            "returned_at": returned_at.isoformat() if returned_at else None,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Issue":
        returned_at = from_db_time(row["returned_at"])
        keys = row.keys()
        return Issue(
            id=row["id"],
            book_id=row["book_id"],
            user_id=row["user_id"],
            issued_at=from_db_time(row["issued_at"]),
            due_date=from_db_time(row["due_date"]),
            status=Active() if returned_at is None else Returned(at=returned_at),
            book_title=row["book_title"] if "book_title" in keys else "",
            user_name=row["user_name"] if "user_name" in keys else "",
        )


class User:
    """Bir kütüphane hesabı. Parola özeti users modülünden asla çıkmaz."""

    def __init__(self, id: int, name: str, email: str, role: Role, created_at: datetime | None = None) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.role = role
        self.created_at = created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "User":
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            role=Role(row["role"]),
            created_at=from_db_time(row["created_at"]),
        )
