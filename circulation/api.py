"""Ödünç sistemi için HTTP API.

İstekler oturum belirtecini HTTP-only bir çerezde taşır. Her rota
ihtiyaç duyduğu katmanı ``require(...)`` ile bildirir; çağıran istek
başına bir kez çözülür ve işleme açıkça aktarılır.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, Query, Request, Response, Security
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import APIKeyCookie
from pydantic import BaseModel

from circulation.access import Caller, Tier, authorize
from circulation.config import Settings, settings as default_settings
from circulation.errors import LibraryError, NotAuthenticated, StorageError, ValidationError
from circulation.library import Library
from circulation.validators import FormValidator, parse_copies

logger = logging.getLogger(__name__)

session_cookie = APIKeyCookie(name=default_settings.session_cookie_name, auto_error=False)


# --- İstek/yanıt modelleri ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    isbn: str
    total_copies: int
    available_copies: int
    created_at: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str = ""
    author: str = ""
    isbn: str = ""
    copies: Union[int, str] = ""


class IssueModel(BaseModel):
    id: int
    book_id: int
    user_id: int
    book_title: str
    user_name: str
    issued_at: str
    due_date: str
    status: str
    returned_at: Optional[str] = None


class UserModel(BaseModel):
    id: int
    name: str
    email: str
    role: str
    created_at: Optional[str] = None


class SignupModel(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""


class LoginModel(BaseModel):
    email: str = ""
    password: str = ""


class PasswordChangeModel(BaseModel):
    current_password: str = ""
    new_password: str = ""


class MessageModel(BaseModel):
    message: str


class IssueResultModel(BaseModel):
    message: str
    issue: IssueModel


class UserResultModel(BaseModel):
    message: str
    user: UserModel


class BookResultModel(BaseModel):
    message: str
    book: BookModel


# --- Bağımlılıklar ---
def get_library(request: Request) -> Library:
    return request.app.state.library


def current_caller(
    token: Optional[str] = Security(session_cookie),
    library: Library = Depends(get_library),
) -> Caller:
    """Oturum çerezinin arkasındaki çağıran; çerez yoksa anonim."""
    return library.gate.resolve_caller(token)


def require(tier: Tier):
    """Bir rotayı ``tier`` katmanında kısıtlayan bağımlılık."""

    def dependency(response: Response, caller: Caller = Depends(current_caller)) -> Caller:
        authorize(caller, tier)
        if tier >= Tier.AUTHENTICATED:
            response.headers["Cache-Control"] = "no-store"
        return caller

    dependency.__name__ = f"require_{tier.name.lower()}"
    return dependency


def _set_session_cookie(response: Response, token: str, library: Library) -> None:
    response.set_cookie(
        key=default_settings.session_cookie_name,
        value=token,
        max_age=library.settings.session_lifetime_hours * 3600,
        httponly=True,
        secure=library.settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def _error_body(exc: LibraryError) -> dict:
    body = {
        "error": exc.message,
        "code": exc.code,
        "detail": exc.detail,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if isinstance(exc, ValidationError):
        body["field_errors"] = exc.field_errors
    return body


def _form(name: str, *fields: str) -> dict:
    return {"form": name, "fields": list(fields)}


def create_app(settings: Optional[Settings] = None, library: Optional[Library] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    library = library or Library(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        library.sessions.purge_expired()
        try:
            yield
        finally:
            library.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.library = library

    # --- Ara katman ---
    @app.middleware("http")
    async def secure_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline' fonts.googleapis.com; font-src fonts.gstatic.com"
        )
        response.headers["Referrer-Policy"] = "origin-when-cross-origin"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "deny"
        response.headers["X-XSS-Protection"] = "0"
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response

    # --- Hata işleyicileri ---
    @app.exception_handler(NotAuthenticated)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticated):
        return RedirectResponse(url=NotAuthenticated.login_path, status_code=303)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc.detail}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "code": exc.code, "detail": "An unexpected error occurred"},
        )

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    # --- Anonim ---
    @app.get("/ping")
    def ping():
        return Response(content="OK", media_type="text/plain")

    @app.get("/")
    def home(caller: Caller = Depends(current_caller), library: Library = Depends(get_library)):
        return {
            "app": settings.app_name,
            "books": library.ledger.count(),
            "authenticated": not caller.is_anonymous,
            "role": caller.role.value if caller.role else None,
        }

    @app.get("/books", response_model=List[BookModel])
    def list_books(
        q: Optional[str] = Query(None, description="Search title, author or ISBN"),
        library: Library = Depends(get_library),
    ):
        """Kataloğu listele; ``q`` verilirse katalogda ara."""
        books = library.ledger.search(q) if q else library.ledger.list_books()
        return [BookModel(**b.to_dict()) for b in books]

    @app.get("/user/signup")
    def signup_form():
        return _form("signup", "name", "email", "password")

    @app.post("/user/signup", response_model=UserResultModel, status_code=201)
    def signup(
        payload: SignupModel,
        response: Response,
        token: Optional[str] = Security(session_cookie),
        library: Library = Depends(get_library),
    ):
        user_id = library.users.insert(payload.name, payload.email, payload.password)
        _set_session_cookie(response, library.sessions.renew(token, user_id), library)
        user = library.users.get(user_id)
        return UserResultModel(message="Account created successfully.", user=UserModel(**user.to_dict()))

    @app.get("/user/login")
    def login_form():
        return _form("login", "email", "password")

    @app.post("/user/login", response_model=UserResultModel)
    def login(
        payload: LoginModel,
        response: Response,
        token: Optional[str] = Security(session_cookie),
        library: Library = Depends(get_library),
    ):
        form = FormValidator()
        form.check_field(bool(payload.email.strip()), "email", "This field cannot be blank")
        form.check_field(bool(payload.password), "password", "This field cannot be blank")
        form.raise_if_invalid()

        user_id = library.users.authenticate(payload.email, payload.password)
        _set_session_cookie(response, library.sessions.renew(token, user_id), library)
        user = library.users.get(user_id)
        return UserResultModel(message="Logged in.", user=UserModel(**user.to_dict()))

    # --- Oturum açmış ---
    @app.post("/user/logout", response_model=MessageModel)
    def logout(
        response: Response,
        caller: Caller = Depends(require(Tier.AUTHENTICATED)),
        token: Optional[str] = Security(session_cookie),
        library: Library = Depends(get_library),
    ):
        if token:
            library.sessions.destroy(token)
        response.delete_cookie(default_settings.session_cookie_name, path="/")
        return MessageModel(message="You've been logged out successfully!")

    @app.get("/user/me", response_model=UserModel)
    def me(caller: Caller = Depends(require(Tier.AUTHENTICATED)), library: Library = Depends(get_library)):
        return UserModel(**library.users.get(caller.user_id).to_dict())

    @app.post("/user/password", response_model=MessageModel)
    def change_password(
        payload: PasswordChangeModel,
        caller: Caller = Depends(require(Tier.AUTHENTICATED)),
        library: Library = Depends(get_library),
    ):
        library.users.update_password(caller.user_id, payload.current_password, payload.new_password)
        return MessageModel(message="Your password has been updated.")

    @app.get("/my-books", response_model=List[IssueModel])
    def my_books(caller: Caller = Depends(require(Tier.AUTHENTICATED)), library: Library = Depends(get_library)):
        return [IssueModel(**i.to_dict()) for i in library.tracker.get_active_by_user(caller.user_id)]

    # --- Kütüphaneci ---
    # "new" bir kimlik olarak ayrıştırılmasın diye /books/{book_id} rotasından önce tanımlı
    @app.get("/books/new")
    def book_create_form(caller: Caller = Depends(require(Tier.LIBRARIAN))):
        return _form("book", "title", "author", "isbn", "copies")

    @app.post("/books/new", response_model=BookResultModel, status_code=201)
    def book_create(
        payload: BookCreateModel,
        caller: Caller = Depends(require(Tier.LIBRARIAN)),
        library: Library = Depends(get_library),
    ):
        copies = parse_copies(payload.copies)
        if copies is None:
            form = FormValidator()
            form.check_field(bool(payload.title.strip()), "title", "Title cannot be blank")
            form.check_field(bool(payload.author.strip()), "author", "Author cannot be blank")
            form.check_field(bool(payload.isbn.strip()), "isbn", "ISBN cannot be blank")
            form.add_field_error("copies", "Must be a number >= 1")
            form.raise_if_invalid()
        book_id = library.ledger.insert(payload.title, payload.author, payload.isbn, copies)
        book = library.ledger.get(book_id)
        return BookResultModel(message="Book added successfully.", book=BookModel(**book.to_dict()))

    # --- Anonim (kimliğe göre) ---
    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: int, library: Library = Depends(get_library)):
        return BookModel(**library.ledger.get(book_id).to_dict())

    # --- Oturum açmış (ödünç alma) ---
    @app.post("/books/{book_id}/issue", response_model=IssueResultModel, status_code=201)
    def issue_book(
        book_id: int,
        caller: Caller = Depends(require(Tier.AUTHENTICATED)),
        library: Library = Depends(get_library),
    ):
        issue = library.orchestrator.issue_book(caller, book_id)
        return IssueResultModel(
            message=f"Book issued! Due: {issue.due_date:%d %b %Y}",
            issue=IssueModel(**issue.to_dict()),
        )

    @app.post("/issues/{issue_id}/return", response_model=IssueResultModel)
    def return_book(
        issue_id: int,
        caller: Caller = Depends(require(Tier.AUTHENTICATED)),
        library: Library = Depends(get_library),
    ):
        issue = library.orchestrator.return_book(caller, issue_id)
        return IssueResultModel(message="Book returned successfully.", issue=IssueModel(**issue.to_dict()))

    # --- Kütüphaneci (katalog ve geçmiş) ---
    @app.post("/books/{book_id}/delete", response_model=MessageModel)
    def book_delete(
        book_id: int,
        caller: Caller = Depends(require(Tier.LIBRARIAN)),
        library: Library = Depends(get_library),
    ):
        library.ledger.delete(book_id)
        return MessageModel(message="Book removed.")

    @app.get("/books/{book_id}/issues", response_model=List[IssueModel])
    def book_issues(
        book_id: int,
        caller: Caller = Depends(require(Tier.LIBRARIAN)),
        library: Library = Depends(get_library),
    ):
        library.ledger.get(book_id)
        return [IssueModel(**i.to_dict()) for i in library.tracker.get_active_by_book(book_id)]

    @app.get("/issues", response_model=List[IssueModel])
    def all_issues(caller: Caller = Depends(require(Tier.LIBRARIAN)), library: Library = Depends(get_library)):
        return [IssueModel(**i.to_dict()) for i in library.tracker.get_all()]

    # --- Yönetici ---
    @app.get("/admin/users", response_model=List[UserModel])
    def admin_users(caller: Caller = Depends(require(Tier.ADMIN)), library: Library = Depends(get_library)):
        return [UserModel(**u.to_dict()) for u in library.users.list_users()]

    @app.post("/admin/users/{user_id}/promote", response_model=UserResultModel)
    def admin_promote(
        user_id: int,
        caller: Caller = Depends(require(Tier.ADMIN)),
        library: Library = Depends(get_library),
    ):
        user = library.users.promote_to_librarian(user_id)
        return UserResultModel(message="User promoted to librarian.", user=UserModel(**user.to_dict()))

    return app
