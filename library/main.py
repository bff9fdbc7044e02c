import os
from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from library import crud
from library.auth import authenticate_user, create_access_token, require_roles
from library.config import Settings, cors_origins, get_settings, load_settings
from library.exceptions import NotAuthenticatedError, add_exception_handlers
from library.models import Base, Role
from library.pagination import page_envelope, parse_pagination
from library.schemas import (
    AuthorCreate,
    AuthorSchema,
    BookCreate,
    BookSchema,
    BookUpdate,
    BorrowRequestSchema,
    CategoryCreate,
    CategorySchema,
    DashboardSummary,
    Identity,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    StudentCreate,
    StudentSchema,
    StudentUpdate,
    UserSchema,
)
from library.storage import build_engine, build_session_factory

from typing import List, Optional

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

STAFF_ROLES = (Role.LIBRARIAN, Role.ADMIN)
staff_only = require_roles(*STAFF_ROLES)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        settings = load_settings()
        logger.info("Initializing database connection")
        engine = build_engine(settings.database_url)
        # No migrations: create_all only adds missing tables, existing ones are
        # never altered, so schema changes need a manual upgrade.
        Base.metadata.create_all(bind=engine)
        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = build_session_factory(engine)
    yield
    if not app.state.testing:
        logger.info("Closing database connection")
        app.state.engine.dispose()


app = FastAPI(
    title="School Library API",
    lifespan=lifespan,
    description="Students, books, authors, categories and borrow records for a school library",
    version="1.0.0",
)

# The middleware stack is fixed before the lifespan runs, so origins are read
# from the environment here rather than from app.state.settings.
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


@app.get("/health")
def health():
    return {"status": "ok"}


# Auth
@app.post("/api/auth/login", response_model=LoginResponse)
def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = authenticate_user(db, credentials.username, credentials.password)
    if user is None:
        logger.warning(f"Failed login for {credentials.username!r}")
        raise NotAuthenticatedError("Invalid credentials")

    logger.info(f"User {user.id} logged in")
    return LoginResponse(
        token=create_access_token(user, settings),
        user=UserSchema.model_validate(user),
    )


# Students
@app.post(
    "/api/students", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
def create_student(
    student: StudentCreate,
    identity: Identity = Depends(staff_only),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    created_by = identity.id if settings.student_created_by_required else None
    db_student = crud.create_student(db, student, created_by)
    return MessageResponse(message="Student created", id=db_student.id)


@app.get("/api/students", dependencies=[Depends(staff_only)])
def list_students(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    pagination = parse_pagination(page, limit, settings)
    students, total = crud.list_students(db, pagination)
    items = [StudentSchema.model_validate(s).model_dump() for s in students]
    return page_envelope(pagination, total, "students", items)


@app.get(
    "/api/students/search",
    response_model=List[StudentSchema],
    dependencies=[Depends(staff_only)],
)
def search_students(query: Optional[str] = Query(None), db: Session = Depends(get_db)):
    return crud.search_students(db, query)


@app.get(
    "/api/students/{student_id}",
    response_model=StudentSchema,
    dependencies=[Depends(staff_only)],
)
def fetch_single_student(student_id: int, db: Session = Depends(get_db)):
    return crud.get_student(db, student_id)


@app.put(
    "/api/students/{student_id}",
    response_model=MessageResponse,
    dependencies=[Depends(staff_only)],
)
def modify_student(
    student_id: int, student: StudentUpdate, db: Session = Depends(get_db)
):
    crud.update_student(db, student_id, student)
    return MessageResponse(message="Student updated", id=student_id)


@app.delete(
    "/api/students/{student_id}",
    response_model=MessageResponse,
    dependencies=[Depends(staff_only)],
)
def remove_student(student_id: int, db: Session = Depends(get_db)):
    crud.delete_student(db, student_id)
    return MessageResponse(message="Student deleted", id=student_id)


# Authors and categories
@app.get(
    "/api/authors",
    response_model=List[AuthorSchema],
    dependencies=[Depends(staff_only)],
)
def list_authors(db: Session = Depends(get_db)):
    return crud.list_authors(db)


@app.post(
    "/api/authors",
    response_model=AuthorSchema,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(staff_only)],
)
def create_author(author: AuthorCreate, db: Session = Depends(get_db)):
    return crud.create_author(db, author)


@app.get(
    "/api/categories",
    response_model=List[CategorySchema],
    dependencies=[Depends(staff_only)],
)
def list_categories(db: Session = Depends(get_db)):
    return crud.list_categories(db)


@app.post(
    "/api/categories",
    response_model=CategorySchema,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(staff_only)],
)
def create_category(category: CategoryCreate, db: Session = Depends(get_db)):
    return crud.create_category(db, category)


# Books
@app.post(
    "/api/books", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
def add_book(
    book: BookCreate,
    identity: Identity = Depends(staff_only),
    db: Session = Depends(get_db),
):
    db_book = crud.create_book(db, book, identity.id)
    return MessageResponse(message="Book created", id=db_book.id)


@app.get("/api/books", dependencies=[Depends(staff_only)])
def list_books(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    pagination = parse_pagination(page, limit, settings)
    books, total = crud.list_books(db, pagination)
    return page_envelope(pagination, total, "books", books)


@app.get(
    "/api/books/{book_id}",
    response_model=BookSchema,
    dependencies=[Depends(staff_only)],
)
def read_book(book_id: int, db: Session = Depends(get_db)):
    return crud.get_book(db, book_id)


@app.put(
    "/api/books/{book_id}",
    response_model=MessageResponse,
    dependencies=[Depends(staff_only)],
)
def modify_book(book_id: int, book_update: BookUpdate, db: Session = Depends(get_db)):
    crud.update_book(db, book_id, book_update)
    return MessageResponse(message="Book updated", id=book_id)


@app.delete(
    "/api/books/{book_id}",
    response_model=MessageResponse,
    dependencies=[Depends(staff_only)],
)
def remove_book(book_id: int, db: Session = Depends(get_db)):
    crud.delete_book(db, book_id)
    return MessageResponse(message="Book deleted", id=book_id)


# Borrows
@app.post(
    "/api/borrows", response_model=MessageResponse, status_code=status.HTTP_201_CREATED
)
def borrow_book_item(
    borrow_request: BorrowRequestSchema,
    identity: Identity = Depends(staff_only),
    db: Session = Depends(get_db),
):
    borrow = crud.borrow_book(db, borrow_request, identity.id)
    return MessageResponse(message="Book borrowed successfully", id=borrow.id)


@app.put(
    "/api/borrows/{borrow_id}/return",
    response_model=MessageResponse,
    dependencies=[Depends(staff_only)],
)
def return_book_item(borrow_id: int, db: Session = Depends(get_db)):
    crud.return_book(db, borrow_id)
    return MessageResponse(message="Book returned successfully", id=borrow_id)


@app.get("/api/borrows", dependencies=[Depends(staff_only)])
def list_borrows(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    pagination = parse_pagination(page, limit, settings)
    borrows, total = crud.list_borrows(db, pagination)
    return page_envelope(pagination, total, "borrows", borrows)


# Dashboard
@app.get(
    "/api/dashboard",
    response_model=DashboardSummary,
    dependencies=[Depends(staff_only)],
)
def dashboard(db: Session = Depends(get_db)):
    return crud.get_dashboard_summary(db)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 3000))
    print(f"Starting library server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
