"""Erişim denetimi.

Her biri bir alttakini genişleten dört katman::

    ANONYMOUS < AUTHENTICATED < LIBRARIAN < ADMIN

Yetkilendirme, çağıranın ve işlemin gerektirdiği katmanın saf bir
fonksiyonudur. Depolamaya dokunan tek kısım, bir oturum belirtecinden
çağıranı çözmektir.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Callable, Dict, Optional

from circulation.errors import Forbidden, NotAuthenticated, NotFound
from circulation.models import Role

if TYPE_CHECKING:
    from circulation.sessions import SessionStore
    from circulation.users import UserDirectory

logger = logging.getLogger(__name__)


class Tier(IntEnum):
    ANONYMOUS = 0
    AUTHENTICATED = 1
    LIBRARIAN = 2
    ADMIN = 3


@dataclass(frozen=True)
class Caller:
    """İsteği yapan: hiç kimse ya da güncel rolüyle bir kullanıcı kimliği."""

    user_id: Optional[int] = None
    role: Optional[Role] = None

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls()

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def tier(self) -> Tier:
        if self.user_id is None or self.role is None:
            return Tier.ANONYMOUS
        if self.role is Role.ADMIN:
            return Tier.ADMIN
        if self.role is Role.LIBRARIAN:
            return Tier.LIBRARIAN
        return Tier.AUTHENTICATED


# ------------------------- Yüklemler ------------------------- #
# Her katmanın kontrolü önce bir alttakini çalıştırır.

def is_authenticated(caller: Caller) -> bool:
    return not caller.is_anonymous


def is_librarian(caller: Caller) -> bool:
    return is_authenticated(caller) and caller.role is not None and caller.role.at_least(Role.LIBRARIAN)


def is_admin(caller: Caller) -> bool:
    return is_librarian(caller) and caller.role is Role.ADMIN


TIER_PREDICATES: Dict[Tier, Callable[[Caller], bool]] = {
    Tier.ANONYMOUS: lambda caller: True,
    Tier.AUTHENTICATED: is_authenticated,
    Tier.LIBRARIAN: is_librarian,
    Tier.ADMIN: is_admin,
}


def permits(caller: Caller, tier: Tier) -> bool:
    return TIER_PREDICATES[tier](caller)


def authorize(caller: Caller, tier: Tier) -> Caller:
    """``caller`` ``tier`` katmanında işlem yapabiliyorsa onu döndür.

    Anonim çağıranlar girişe yönlendirilir; katmanın altındaki oturum
    açmış çağıranlar reddedilir.
    """
    if permits(caller, tier):
        return caller
    if not is_authenticated(caller):
        raise NotAuthenticated()
    raise Forbidden(f"Requires {tier.name.lower()} access")


class AccessControlGate:
    """Bir oturum belirtecini Caller'a dönüştürür."""

    def __init__(self, sessions: "SessionStore", users: "UserDirectory") -> None:
        self.sessions = sessions
        self.users = users

    def resolve_caller(self, token: Optional[str]) -> Caller:
        if not token:
            return Caller.anonymous()
        user_id = self.sessions.get_user_id(token)
        if user_id is None:
            return Caller.anonymous()
        # oturum hesaptan uzun yaşayabilir; anonim say
        if not self.users.exists(user_id):
            logger.info(f"Session names deleted user {user_id}; treating caller as anonymous")
            return Caller.anonymous()
        try:
            role = self.users.get_role(user_id)
        except NotFound:
            return Caller.anonymous()
        return Caller(user_id=user_id, role=role)
