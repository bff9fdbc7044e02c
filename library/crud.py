import logging
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, Optional, Tuple

from library import models, schemas
from library.auth import hash_password
from library.exceptions import (
    BadRequestError,
    BookNotFoundError,
    BookOutOfStockError,
    BorrowNotActiveError,
    DatabaseError,
    InvalidRecordError,
    RecordNotFoundError,
    StudentNotFoundError,
)
from library.pagination import Pagination

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 10


def _save(db: Session, record, operation: str):
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
        return record
    except IntegrityError as e:
        db.rollback()
        raise InvalidRecordError(str(e.orig))
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(operation, str(e))


def _update_by_id(db: Session, model, record_id: int, values: dict, entity: str):
    if not values:
        raise BadRequestError(f"No {entity.lower()} fields to update")
    try:
        matched = (
            db.query(model)
            .filter(model.id == record_id)
            .update(
                {getattr(model, key): value for key, value in values.items()},
                synchronize_session=False,
            )
        )
        if matched == 0:
            db.rollback()
            raise RecordNotFoundError(entity, record_id)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise InvalidRecordError(str(e.orig))
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("update", str(e))


def _delete_by_id(db: Session, model, record_id: int, entity: str):
    try:
        deleted = (
            db.query(model)
            .filter(model.id == record_id)
            .delete(synchronize_session=False)
        )
        if deleted == 0:
            db.rollback()
            raise RecordNotFoundError(entity, record_id)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise InvalidRecordError(str(e.orig))
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("delete", str(e))


def _count(query) -> int:
    try:
        return query.count()
    except SQLAlchemyError as e:
        raise DatabaseError("count", str(e))


# Users

def create_user_record(
    db: Session,
    username: str,
    password: str,
    full_name: str,
    role: models.Role = models.Role.LIBRARIAN,
) -> models.User:
    db_user = models.User(
        username=username,
        password=hash_password(password),
        full_name=full_name,
        role=role.value,
    )
    return _save(db, db_user, "create")


# Students

def create_student(
    db: Session, student: schemas.StudentCreate, created_by: Optional[int] = None
) -> models.Student:
    db_student = models.Student(**student.model_dump(), created_by=created_by)
    db_student = _save(db, db_student, "create")
    logger.info(f"Student {db_student.id} created by {created_by}")
    return db_student


def get_student(db: Session, student_id: int) -> models.Student:
    try:
        student = (
            db.query(models.Student).filter(models.Student.id == student_id).first()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if student is None:
        raise StudentNotFoundError(student_id)
    return student


def list_students(
    db: Session, pagination: Pagination
) -> Tuple[List[models.Student], int]:
    total = _count(db.query(models.Student))
    try:
        students = (
            db.query(models.Student)
            .order_by(models.Student.id)
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    return students, total


def search_students(db: Session, query: Optional[str]) -> List[models.Student]:
    if not query:
        raise BadRequestError("Search query is required")
    pattern = f"%{query}%"
    try:
        return (
            db.query(models.Student)
            .filter(
                or_(
                    models.Student.full_name.ilike(pattern),
                    models.Student.id_card.ilike(pattern),
                )
            )
            .order_by(models.Student.id)
            .limit(SEARCH_RESULT_LIMIT)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("search", str(e))


def update_student(db: Session, student_id: int, student: schemas.StudentUpdate):
    values = student.model_dump(exclude_unset=True)
    _update_by_id(db, models.Student, student_id, values, "Student")
    logger.info(f"Student {student_id} updated: {sorted(values)}")


def delete_student(db: Session, student_id: int):
    _delete_by_id(db, models.Student, student_id, "Student")
    logger.info(f"Student {student_id} deleted")


# Authors and categories

def list_authors(db: Session) -> List[models.Author]:
    try:
        return db.query(models.Author).order_by(models.Author.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def create_author(db: Session, author: schemas.AuthorCreate) -> models.Author:
    return _save(db, models.Author(**author.model_dump()), "create")


def list_categories(db: Session) -> List[models.Category]:
    try:
        return db.query(models.Category).order_by(models.Category.id).all()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))


def create_category(db: Session, category: schemas.CategoryCreate) -> models.Category:
    return _save(db, models.Category(**category.model_dump()), "create")


def _ensure_exists(db: Session, model, record_id: Optional[int], entity: str):
    if record_id is None:
        return
    try:
        found = db.query(model.id).filter(model.id == record_id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if found is None:
        raise InvalidRecordError(f"{entity} {record_id} does not exist")


# Books

def create_book(
    db: Session, book: schemas.BookCreate, created_by: Optional[int] = None
) -> models.Book:
    _ensure_exists(db, models.Author, book.author_id, "Author")
    _ensure_exists(db, models.Category, book.category_id, "Category")
    db_book = _save(db, models.Book(**book.model_dump(), created_by=created_by), "create")
    logger.info(f"Book {db_book.id} created with quantity {db_book.quantity}")
    return db_book


def get_book(db: Session, book_id: int) -> models.Book:
    try:
        book = db.query(models.Book).filter(models.Book.id == book_id).first()
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    if book is None:
        raise BookNotFoundError(book_id)
    return book


def list_books(db: Session, pagination: Pagination) -> Tuple[List[dict], int]:
    total = _count(db.query(models.Book))
    try:
        rows = (
            db.query(
                models.Book,
                models.Author.full_name.label("author_name"),
                models.Category.name.label("category_name"),
            )
            .outerjoin(models.Author, models.Book.author_id == models.Author.id)
            .outerjoin(models.Category, models.Book.category_id == models.Category.id)
            .order_by(models.Book.id)
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))

    books = [
        schemas.BookListItem(
            **schemas.BookSchema.model_validate(book).model_dump(),
            author_name=author_name,
            category_name=category_name,
        ).model_dump()
        for book, author_name, category_name in rows
    ]
    return books, total


def update_book(db: Session, book_id: int, book: schemas.BookUpdate):
    values = book.model_dump(exclude_unset=True)
    if "author_id" in values:
        _ensure_exists(db, models.Author, values["author_id"], "Author")
    if "category_id" in values:
        _ensure_exists(db, models.Category, values["category_id"], "Category")
    try:
        _update_by_id(db, models.Book, book_id, values, "Book")
    except RecordNotFoundError:
        raise BookNotFoundError(book_id)
    logger.info(f"Book {book_id} updated: {sorted(values)}")


def delete_book(db: Session, book_id: int):
    try:
        _delete_by_id(db, models.Book, book_id, "Book")
    except RecordNotFoundError:
        raise BookNotFoundError(book_id)
    logger.info(f"Book {book_id} deleted")


# Borrows

def borrow_book(
    db: Session, borrow_request: schemas.BorrowRequestSchema, actor_id: Optional[int]
) -> models.Borrow:
    """Check a copy of a book out to a student.

    The stock check reads the book first; the borrow row and the decrement
    are then written in a single commit, and the decrement only applies
    while ``quantity > 0``.  A stale read that passed the check therefore
    ends in ``BookOutOfStockError`` instead of a negative quantity.
    """
    book = get_book(db, borrow_request.book_id)
    if book.quantity <= 0:
        raise BookOutOfStockError(book.id)
    get_student(db, borrow_request.student_id)

    try:
        borrow = models.Borrow(
            student_id=borrow_request.student_id,
            book_id=borrow_request.book_id,
            created_by=actor_id,
            borrow_date=models.utcnow(),
        )
        db.add(borrow)

        claimed = (
            db.query(models.Book)
            .filter(models.Book.id == borrow_request.book_id, models.Book.quantity > 0)
            .update(
                {models.Book.quantity: models.Book.quantity - 1},
                synchronize_session=False,
            )
        )
        if claimed == 0:
            db.rollback()
            logger.warning(f"Book {borrow_request.book_id} ran out of stock mid-borrow")
            raise BookOutOfStockError(borrow_request.book_id)

        db.commit()
        db.refresh(borrow)
    except IntegrityError as e:
        db.rollback()
        raise InvalidRecordError(str(e.orig))
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("borrow", str(e))

    logger.info(
        f"Borrow {borrow.id}: book {borrow.book_id} to student {borrow.student_id}"
    )
    return borrow


def return_book(db: Session, borrow_id: int) -> models.Borrow:
    try:
        borrow = (
            db.query(models.Borrow)
            .filter(models.Borrow.id == borrow_id, models.Borrow.return_date.is_(None))
            .first()
        )
        if borrow is None:
            raise BorrowNotActiveError(borrow_id)

        closed = (
            db.query(models.Borrow)
            .filter(models.Borrow.id == borrow_id, models.Borrow.return_date.is_(None))
            .update(
                {models.Borrow.return_date: models.utcnow()},
                synchronize_session=False,
            )
        )
        if closed == 0:
            db.rollback()
            raise BorrowNotActiveError(borrow_id)

        db.query(models.Book).filter(models.Book.id == borrow.book_id).update(
            {models.Book.quantity: models.Book.quantity + 1},
            synchronize_session=False,
        )
        db.commit()
        db.refresh(borrow)
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("return", str(e))

    logger.info(f"Borrow {borrow_id} returned, book {borrow.book_id} restocked")
    return borrow


def list_borrows(db: Session, pagination: Pagination) -> Tuple[List[dict], int]:
    total = _count(db.query(models.Borrow))
    try:
        rows = (
            db.query(
                models.Borrow.id,
                models.Student.id_card,
                models.Student.full_name,
                models.Book.title,
                models.Borrow.borrow_date,
                models.Borrow.return_date,
            )
            .join(models.Student, models.Borrow.student_id == models.Student.id)
            .join(models.Book, models.Borrow.book_id == models.Book.id)
            .order_by(models.Borrow.borrow_date.desc(), models.Borrow.id.desc())
            .offset(pagination.offset)
            .limit(pagination.limit)
            .all()
        )
    except SQLAlchemyError as e:
        raise DatabaseError("fetch", str(e))
    return [schemas.BorrowListItem(**row._asdict()).model_dump() for row in rows], total


# Dashboard

def get_dashboard_summary(db: Session) -> schemas.DashboardSummary:
    try:
        return schemas.DashboardSummary(
            total_books=db.query(func.count(models.Book.id)).scalar(),
            total_students=db.query(func.count(models.Student.id)).scalar(),
            total_borrows=db.query(func.count(models.Borrow.id)).scalar(),
            borrowed_not_returned=db.query(func.count(models.Borrow.id))
            .filter(models.Borrow.return_date.is_(None))
            .scalar(),
            returned=db.query(func.count(models.Borrow.id))
            .filter(models.Borrow.return_date.is_not(None))
            .scalar(),
        )
    except SQLAlchemyError as e:
        raise DatabaseError("dashboard", str(e))
