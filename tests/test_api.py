import pytest

from circulation.models import Role


def add_book(lib, title="Dune", copies=1):
    return lib.ledger.insert(title, "Frank Herbert", "9780441013593", copies)


def test_ping(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.text == "OK"


def test_security_headers(client):
    response = client.get("/books")
    assert response.headers["X-Frame-Options"] == "deny"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Referrer-Policy"] == "origin-when-cross-origin"
    assert "default-src 'self'" in response.headers["Content-Security-Policy"]


def test_home_reports_caller(client, login):
    assert client.get("/").json()["authenticated"] is False
    librarian = login(Role.LIBRARIAN)
    body = librarian.get("/").json()
    assert body["authenticated"] is True
    assert body["role"] == "librarian"


def test_anonymous_can_browse_and_search(client, lib):
    add_book(lib, "Dune")
    lib.ledger.insert("Emma", "Jane Austen", "9780141439587", 2)

    response = client.get("/books")
    assert response.status_code == 200
    assert [b["title"] for b in response.json()] == ["Dune", "Emma"]

    response = client.get("/books", params={"q": "austen"})
    assert [b["title"] for b in response.json()] == ["Emma"]


def test_get_single_book(client, lib):
    book_id = add_book(lib)
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 1

    response = client.get("/books/999")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_signup_logs_in(client):
    assert client.get("/user/signup").json()["fields"] == ["name", "email", "password"]

    response = client.post("/user/signup", json={"name": "Alice", "email": "alice@example.com", "password": "password123"})
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "member"

    assert client.get("/my-books").status_code == 200


def test_signup_duplicate_email(client):
    payload = {"name": "Alice", "email": "alice@example.com", "password": "password123"}
    client.post("/user/signup", json=payload)

    response = client.post("/user/signup", json=payload)
    assert response.status_code == 400
    assert response.json()["field_errors"] == {"email": "Email address is already in use"}


def test_signup_validation_errors(client):
    response = client.post("/user/signup", json={"name": "", "email": "nope", "password": "x"})
    assert response.status_code == 422
    assert set(response.json()["field_errors"]) == {"name", "email", "password"}


def test_login_and_logout(client, make_user):
    make_user("alice")

    response = client.post("/user/login", json={"email": "alice@example.com", "password": "wrong-password"})
    assert response.status_code == 400
    assert response.json()["error"] == "Email or password is incorrect"

    response = client.post("/user/login", json={"email": "alice@example.com", "password": "password123"})
    assert response.status_code == 200
    assert client.get("/user/me").json()["email"] == "alice@example.com"

    assert client.post("/user/logout").status_code == 200
    response = client.get("/my-books", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/user/login"


def test_login_requires_fields(client):
    response = client.post("/user/login", json={"email": "", "password": ""})
    assert response.status_code == 422
    assert set(response.json()["field_errors"]) == {"email", "password"}


@pytest.mark.parametrize("method,path", [
    ("post", "/user/logout"),
    ("get", "/user/me"),
    ("get", "/my-books"),
    ("post", "/books/1/issue"),
    ("post", "/issues/1/return"),
    ("get", "/books/new"),
    ("post", "/books/1/delete"),
    ("get", "/issues"),
    ("get", "/admin/users"),
    ("post", "/admin/users/1/promote"),
])
def test_anonymous_is_redirected_to_login(client, method, path):
    response = getattr(client, method)(path, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/user/login"


@pytest.mark.parametrize("method,path", [
    ("get", "/books/new"),
    ("post", "/books/1/delete"),
    ("get", "/books/1/issues"),
    ("get", "/issues"),
    ("get", "/admin/users"),
    ("post", "/admin/users/1/promote"),
])
def test_member_is_forbidden_above_its_tier(login, lib, method, path):
    add_book(lib)
    member = login(Role.MEMBER)

    response = getattr(member, method)(path)
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"
    assert lib.ledger.count() == 1


def test_member_cannot_create_books(login, lib):
    member = login(Role.MEMBER)
    response = member.post("/books/new", json={"title": "X", "author": "Y", "isbn": "1", "copies": 1})
    assert response.status_code == 403
    assert lib.ledger.count() == 0


def test_librarian_is_forbidden_on_admin_routes(login, make_user, lib):
    target = make_user("target")
    librarian = login(Role.LIBRARIAN)

    assert librarian.get("/admin/users").status_code == 403
    assert librarian.post(f"/admin/users/{target}/promote").status_code == 403
    assert lib.users.get(target).role is Role.MEMBER


def test_authenticated_responses_are_not_cached(login):
    member = login(Role.MEMBER)
    assert member.get("/my-books").headers["Cache-Control"] == "no-store"


def test_librarian_creates_and_deletes_books(login, lib):
    librarian = login(Role.LIBRARIAN)
    assert librarian.get("/books/new").json()["form"] == "book"

    response = librarian.post("/books/new", json={"title": "Dune", "author": "Frank Herbert", "isbn": "9780441013593", "copies": "2"})
    assert response.status_code == 201
    book = response.json()["book"]
    assert book["total_copies"] == 2
    assert book["available_copies"] == 2

    response = librarian.post(f"/books/{book['id']}/delete")
    assert response.status_code == 200
    assert lib.ledger.count() == 0

    # deleting again is still reported as success
    assert librarian.post(f"/books/{book['id']}/delete").status_code == 200


def test_book_form_validation(login, lib):
    librarian = login(Role.LIBRARIAN)

    response = librarian.post("/books/new", json={"title": " ", "author": "", "isbn": "", "copies": "0"})
    assert response.status_code == 422
    assert response.json()["field_errors"] == {
        "title": "Title cannot be blank",
        "author": "Author cannot be blank",
        "isbn": "ISBN cannot be blank",
        "copies": "Must be a number >= 1",
    }

    response = librarian.post("/books/new", json={"title": "", "author": "A", "isbn": "1", "copies": 1})
    assert response.status_code == 422
    assert list(response.json()["field_errors"]) == ["title"]
    assert lib.ledger.count() == 0


def test_issue_and_return_over_http(login, lib):
    book_id = add_book(lib, copies=1)
    member = login(Role.MEMBER)

    response = member.post(f"/books/{book_id}/issue")
    assert response.status_code == 201
    body = response.json()
    assert body["message"].startswith("Book issued! Due: ")
    issue_id = body["issue"]["id"]

    assert [i["id"] for i in member.get("/my-books").json()] == [issue_id]
    assert lib.ledger.get(book_id).available_copies == 0

    response = member.post(f"/issues/{issue_id}/return")
    assert response.status_code == 200
    assert response.json()["issue"]["status"] == "returned"
    assert member.get("/my-books").json() == []

    response = member.post(f"/issues/{issue_id}/return")
    assert response.status_code == 403
    assert lib.ledger.get(book_id).available_copies == 1


def test_issue_conflicts(login, lib):
    book_id = add_book(lib, copies=1)
    first = login(Role.MEMBER)
    second = login(Role.MEMBER)

    assert first.post(f"/books/{book_id}/issue").status_code == 201

    response = first.post(f"/books/{book_id}/issue")
    assert response.status_code == 409
    assert response.json()["code"] in ("ALREADY_ISSUED", "NO_COPIES_AVAILABLE")

    response = second.post(f"/books/{book_id}/issue")
    assert response.status_code == 409
    assert response.json()["code"] == "NO_COPIES_AVAILABLE"

    assert second.post("/books/999/issue").status_code == 404


def test_return_of_another_members_issue_is_forbidden(login, lib):
    book_id = add_book(lib, copies=1)
    owner = login(Role.MEMBER)
    other = login(Role.MEMBER)
    issue_id = owner.post(f"/books/{book_id}/issue").json()["issue"]["id"]

    assert other.post(f"/issues/{issue_id}/return").status_code == 403
    assert lib.tracker.get(issue_id).is_active


def test_librarian_sees_history(login, lib):
    book_id = add_book(lib, copies=2)
    member = login(Role.MEMBER)
    issue_id = member.post(f"/books/{book_id}/issue").json()["issue"]["id"]
    librarian = login(Role.LIBRARIAN)

    history = librarian.get("/issues").json()
    assert [i["id"] for i in history] == [issue_id]
    assert history[0]["book_title"] == "Dune"

    assert [i["id"] for i in librarian.get(f"/books/{book_id}/issues").json()] == [issue_id]
    assert librarian.get("/books/999/issues").status_code == 404


def test_admin_lists_and_promotes(login, make_user, lib):
    target = make_user("target")
    admin = login(Role.ADMIN)

    emails = [u["email"] for u in admin.get("/admin/users").json()]
    assert "target@example.com" in emails

    response = admin.post(f"/admin/users/{target}/promote")
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "librarian"
    assert admin.post("/admin/users/999/promote").status_code == 404


def test_change_password(login, lib):
    member = login(Role.MEMBER, name="pw")

    response = member.post("/user/password", json={"current_password": "wrong-one", "new_password": "another-pass"})
    assert response.status_code == 400

    response = member.post("/user/password", json={"current_password": "password123", "new_password": "another-pass"})
    assert response.status_code == 200
    assert lib.users.authenticate("pw@example.com", "another-pass") == member.user_id


@pytest.mark.parametrize("copies", [10 ** 20, "100000000000000000000", 0, "two"])
def test_book_create_rejects_unusable_copy_counts(login, lib, copies):
    librarian = login(Role.LIBRARIAN)
    response = librarian.post("/books/new", json={"title": "Dune", "author": "Frank Herbert", "isbn": "1", "copies": copies})
    assert response.status_code == 422
    assert response.json()["field_errors"] == {"copies": "Must be a number >= 1"}
    assert lib.ledger.count() == 0


def test_ids_too_large_for_storage_are_unknown(login):
    huge = "99999999999999999999999"
    member = login(Role.MEMBER)
    librarian = login(Role.LIBRARIAN)
    admin = login(Role.ADMIN)

    assert member.get(f"/books/{huge}").status_code == 404
    assert member.post(f"/books/{huge}/issue").status_code == 404
    assert member.post(f"/issues/{huge}/return").status_code == 403
    assert librarian.get(f"/books/{huge}/issues").status_code == 404
    assert librarian.post(f"/books/{huge}/delete").status_code == 200
    assert admin.post(f"/admin/users/{huge}/promote").status_code == 404
