import pytest

from library import crud
from library.exceptions import BookOutOfStockError, BorrowNotActiveError
from library.models import Book, Borrow
from library.schemas import BookUpdate, BorrowRequestSchema

from tests.conftest import TestingSessionLocal


@pytest.fixture
def last_copy(db_session, test_book):
    crud.update_book(db_session, test_book.id, BookUpdate(quantity=1))
    db_session.expire_all()
    return test_book


def test_stale_stock_read_cannot_oversubscribe(db_session, last_copy, test_student, librarian):
    request = BorrowRequestSchema(student_id=test_student.id, book_id=last_copy.id)

    # This session has seen one copy left and keeps that view.
    assert crud.get_book(db_session, last_copy.id).quantity == 1

    other = TestingSessionLocal()
    try:
        crud.borrow_book(other, request, librarian.id)
    finally:
        other.close()

    assert crud.get_book(db_session, last_copy.id).quantity == 1
    with pytest.raises(BookOutOfStockError):
        crud.borrow_book(db_session, request, librarian.id)

    db_session.expire_all()
    assert crud.get_book(db_session, last_copy.id).quantity == 0
    assert db_session.query(Borrow).count() == 1


def test_concurrent_return_restocks_once(db_session, test_book, test_student, librarian):
    request = BorrowRequestSchema(student_id=test_student.id, book_id=test_book.id)
    borrow = crud.borrow_book(db_session, request, librarian.id)
    borrow_id, book_id = borrow.id, borrow.book_id

    other = TestingSessionLocal()
    try:
        crud.return_book(other, borrow_id)
    finally:
        other.close()

    with pytest.raises(BorrowNotActiveError):
        crud.return_book(db_session, borrow_id)

    db_session.expire_all()
    assert db_session.query(Book).filter(Book.id == book_id).one().quantity == 3


def test_dashboard_summary(db_session, test_book, test_student, librarian):
    request = BorrowRequestSchema(student_id=test_student.id, book_id=test_book.id)
    first = crud.borrow_book(db_session, request, librarian.id)
    crud.borrow_book(db_session, request, librarian.id)
    crud.return_book(db_session, first.id)

    summary = crud.get_dashboard_summary(db_session)
    assert summary.model_dump() == {
        "total_books": 1,
        "total_students": 1,
        "total_borrows": 2,
        "borrowed_not_returned": 1,
        "returned": 1,
    }
