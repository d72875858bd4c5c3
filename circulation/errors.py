"""
Ödünç sistemi için hata sınıflandırması.

Her alan hatası, makine tarafından okunabilir bir ``code`` ve API
katmanının yanıt verdiği HTTP durumunu taşıyan bir ``LibraryError``'dır.
Doğrulama ve alan hataları kullanıcıya gösterilir; ``StorageError``
günlüğe yazılır ve genel bir hatayla yanıtlanır.
"""

from typing import Dict, Optional


class LibraryError(Exception):
    """Ödünç sistemi hataları için temel istisna."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        detail: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class NotFound(LibraryError):
    """Eksik kitap, ödünç veya kullanıcı başvurusu."""

    def __init__(self, resource: str, identifier: object):
        super().__init__(
            message=f"{resource} not found",
            code="NOT_FOUND",
            status_code=404,
            detail=f"No {resource.lower()} with identifier '{identifier}' exists",
        )
        self.resource = resource
        self.identifier = identifier


class ValidationError(LibraryError):
    """Bir veya daha fazla form alanı doğrulamadan geçemedi."""

    def __init__(self, field_errors: Dict[str, str], message: str = "Please correct the errors below"):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
        )
        self.field_errors = dict(field_errors)


class DuplicateEmail(ValidationError):
    def __init__(self, email: str):
        super().__init__({"email": "Email address is already in use"})
        self.code = "DUPLICATE_EMAIL"
        self.status_code = 400
        self.email = email


class InvalidCredentials(LibraryError):
    # E-posta ya da parola yanlış olsa da mesaj aynıdır.
    def __init__(self):
        super().__init__(
            message="Email or password is incorrect",
            code="INVALID_CREDENTIALS",
            status_code=400,
        )


class NoCopiesAvailable(LibraryError):
    def __init__(self, book_id: int):
        super().__init__(
            message="No copies available right now.",
            code="NO_COPIES_AVAILABLE",
            status_code=409,
            detail=f"Book {book_id} has no available copies",
        )
        self.book_id = book_id


class AlreadyIssued(LibraryError):
    def __init__(self, book_id: int, user_id: int):
        super().__init__(
            message="You already have this book issued.",
            code="ALREADY_ISSUED",
            status_code=409,
            detail=f"User {user_id} already holds an active issue of book {book_id}",
        )
        self.book_id = book_id
        self.user_id = user_id


class Forbidden(LibraryError):
    """Katman uyuşmazlığı ya da başkasının ödüncünü iade girişimi."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            message="Forbidden",
            code="FORBIDDEN",
            status_code=403,
            detail=detail,
        )


class NotAuthenticated(LibraryError):
    """Anonim çağıran, giriş gerektiren bir işleme ulaştı."""

    login_path = "/user/login"

    def __init__(self):
        super().__init__(
            message="Please log in to continue",
            code="NOT_AUTHENTICATED",
            status_code=303,
        )


class StorageError(LibraryError):
    """Beklenmeyen kalıcılık hatası. Yerelde asla kurtarılmaz."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            message="Internal Server Error",
            code="STORAGE_ERROR",
            status_code=500,
            detail=detail,
        )
