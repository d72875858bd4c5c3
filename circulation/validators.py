import re
from typing import Dict, Optional

from circulation.errors import ValidationError

# bir başlığın kopya sayısı için üst sınır; sayılar SQLite INTEGER içinde kalır
MAX_COPIES = 100_000

EMAIL_RX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def not_blank(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def min_chars(value: Optional[str], n: int) -> bool:
    return value is not None and len(value) >= n


def matches(value: Optional[str], rx: re.Pattern) -> bool:
    return value is not None and rx.match(value) is not None


class FormValidator:
    """Alan başına hataları toplar; bir alan için kaydedilen ilk hata geçerlidir.

    >>> form = FormValidator()
    >>> form.check_field(not_blank(""), "title", "Title cannot be blank")
    >>> form.valid()
    False
    """

    def __init__(self) -> None:
        self.field_errors: Dict[str, str] = {}

    def add_field_error(self, key: str, message: str) -> None:
        self.field_errors.setdefault(key, message)

    def check_field(self, ok: bool, key: str, message: str) -> None:
        if not ok:
            self.add_field_error(key, message)

    def valid(self) -> bool:
        return not self.field_errors

    def raise_if_invalid(self) -> None:
        if self.field_errors:
            raise ValidationError(self.field_errors)


def parse_copies(raw: object) -> Optional[int]:
    """Kopya sayısı bir form alanından gelir; 1..MAX_COPIES dışındaki her şey reddedilir."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().lstrip("+").isdecimal():
        try:
            value = int(raw.strip())
        except ValueError:
            # int() için çok fazla basamak
            return None
    else:
        return None
    return value if 1 <= value <= MAX_COPIES else None
