import threading
from datetime import datetime, timedelta, timezone

import pytest

from circulation.access import Caller
from circulation.errors import AlreadyIssued, Forbidden, NoCopiesAvailable, NotAuthenticated, NotFound
from circulation.library import Library
from circulation.models import Role
from circulation.orchestrator import BorrowingOrchestrator


def member(user_id: int) -> Caller:
    return Caller(user_id=user_id, role=Role.MEMBER)


def assert_copy_invariant(lib):
    for book in lib.ledger.list_books():
        assert 0 <= book.available_copies <= book.total_copies
        active = lib.tracker.get_active_by_book(book.id)
        assert len(active) == book.total_copies - book.available_copies
        pairs = [(i.book_id, i.user_id) for i in active]
        assert len(pairs) == len(set(pairs))


def test_issue_then_return_restores_copies(lib, make_user):
    alice = make_user("alice")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 2)

    issue = lib.orchestrator.issue_book(member(alice), book_id)
    assert issue.is_active
    assert lib.ledger.get(book_id).available_copies == 1
    assert_copy_invariant(lib)

    returned = lib.orchestrator.return_book(member(alice), issue.id)
    assert not returned.is_active
    assert lib.ledger.get(book_id).available_copies == 2
    assert_copy_invariant(lib)


def test_due_date_is_fourteen_days_after_issue(lib, make_user):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    orchestrator = BorrowingOrchestrator(lib.pool, lib.ledger, lib.tracker, clock=lambda: now)
    alice = make_user("alice")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)

    issue = orchestrator.issue_book(member(alice), book_id)
    assert issue.issued_at == now
    assert issue.due_date == now + timedelta(days=14)


def test_last_copy_scenario(lib, make_user):
    a = make_user("a")
    b = make_user("b")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)

    issue = lib.orchestrator.issue_book(member(a), book_id)
    assert lib.ledger.get(book_id).available_copies == 0

    with pytest.raises(NoCopiesAvailable):
        lib.orchestrator.issue_book(member(b), book_id)
    assert lib.tracker.get_active_by_user(b) == []

    lib.orchestrator.return_book(member(a), issue.id)
    assert lib.ledger.get(book_id).available_copies == 1

    lib.orchestrator.issue_book(member(b), book_id)
    assert lib.ledger.get(book_id).available_copies == 0
    assert_copy_invariant(lib)


def test_issuing_same_book_twice_is_rejected(lib, make_user):
    a = make_user("a")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 3)
    lib.orchestrator.issue_book(member(a), book_id)

    with pytest.raises(AlreadyIssued):
        lib.orchestrator.issue_book(member(a), book_id)

    assert len(lib.tracker.get_active_by_user(a)) == 1
    assert lib.ledger.get(book_id).available_copies == 2


def test_same_book_can_be_issued_again_after_return(lib, make_user):
    a = make_user("a")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)
    first = lib.orchestrator.issue_book(member(a), book_id)
    lib.orchestrator.return_book(member(a), first.id)

    second = lib.orchestrator.issue_book(member(a), book_id)
    assert second.id != first.id
    assert len(lib.tracker.get_all()) == 2


def test_issue_missing_book(lib, make_user):
    a = make_user("a")
    with pytest.raises(NotFound):
        lib.orchestrator.issue_book(member(a), 404)


def test_return_twice_increments_once(lib, make_user):
    a = make_user("a")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)
    issue = lib.orchestrator.issue_book(member(a), book_id)

    lib.orchestrator.return_book(member(a), issue.id)
    with pytest.raises(Forbidden):
        lib.orchestrator.return_book(member(a), issue.id)

    assert lib.ledger.get(book_id).available_copies == 1


def test_return_of_someone_elses_issue_is_forbidden(lib, make_user):
    a = make_user("a")
    b = make_user("b")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)
    issue = lib.orchestrator.issue_book(member(a), book_id)

    with pytest.raises(Forbidden):
        lib.orchestrator.return_book(member(b), issue.id)

    assert lib.tracker.get(issue.id).is_active
    assert lib.ledger.get(book_id).available_copies == 0


def test_return_unknown_issue_is_forbidden(lib, make_user):
    a = make_user("a")
    with pytest.raises(Forbidden):
        lib.orchestrator.return_book(member(a), 999)


def test_anonymous_caller_cannot_borrow(lib):
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)

    with pytest.raises(NotAuthenticated):
        lib.orchestrator.issue_book(Caller.anonymous(), book_id)
    assert lib.ledger.get(book_id).available_copies == 1


def test_concurrent_requests_for_last_copy(lib, make_user):
    a = make_user("a")
    b = make_user("b")
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 1)

    # separate Library objects mean separate connections, like two request handlers
    other = Library(db_file=lib.settings.database_file, settings=lib.settings)
    barrier = threading.Barrier(2)
    outcomes = {}

    def borrow(library, user_id):
        barrier.wait()
        try:
            library.orchestrator.issue_book(member(user_id), book_id)
            outcomes[user_id] = "issued"
        except NoCopiesAvailable:
            outcomes[user_id] = "no copies"

    threads = [
        threading.Thread(target=borrow, args=(lib, a)),
        threading.Thread(target=borrow, args=(other, b)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    other.close()

    assert sorted(outcomes.values()) == ["issued", "no copies"]
    assert lib.ledger.get(book_id).available_copies == 0
    assert len(lib.tracker.get_active_by_book(book_id)) == 1


def test_many_concurrent_borrowers_never_overdraw(lib, make_user):
    users = [make_user(f"u{i}") for i in range(6)]
    book_id = lib.ledger.insert("Dune", "Frank Herbert", "9780441013593", 2)
    barrier = threading.Barrier(len(users))
    results = []
    lock = threading.Lock()

    def borrow(user_id):
        barrier.wait()
        try:
            lib.orchestrator.issue_book(member(user_id), book_id)
            outcome = "issued"
        except NoCopiesAvailable:
            outcome = "no copies"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=borrow, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert results.count("issued") == 2
    assert results.count("no copies") == 4
    assert_copy_invariant(lib)
