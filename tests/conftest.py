import os
import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from dotenv import load_dotenv

from library import crud
from library.auth import create_access_token
from library.config import Settings, get_settings
from library.main import app, get_db
from library.models import Base
from library.schemas import AuthorCreate, BookCreate, CategoryCreate, StudentCreate
from library.storage import build_engine

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DB_URL", "sqlite:///./test.db")
TEST_SECRET = "library-test-secret-0123456789abcdef"

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def settings():
    return Settings(database_url=SQLALCHEMY_DATABASE_URL, jwt_secret=TEST_SECRET)


@pytest.fixture(scope="function")
def client(db_session, settings):
    app.state.testing = True

    def override_get_db():
        try:
            db = TestingSessionLocal()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture(scope="function")
def librarian(db_session):
    return crud.create_user_record(
        db_session,
        username="liberian1",
        password="password123",
        full_name="Head Librarian",
    )


@pytest.fixture(scope="function")
def auth_headers(librarian, settings):
    token = create_access_token(librarian, settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def test_author(db_session):
    return crud.create_author(db_session, AuthorCreate(full_name="Chinua Achebe"))


@pytest.fixture(scope="function")
def test_category(db_session):
    return crud.create_category(db_session, CategoryCreate(name="Fiction"))


@pytest.fixture(scope="function")
def test_book(db_session, librarian, test_author, test_category):
    book_data = BookCreate(
        title="Things Fall Apart",
        description="A novel about Okonkwo",
        author_id=test_author.id,
        category_id=test_category.id,
        quantity=3,
    )
    return crud.create_book(db_session, book_data, librarian.id)


@pytest.fixture(scope="function")
def test_student(db_session, librarian):
    student_data = StudentCreate(
        full_name="Kakada Sok", id_card="STU0001", student_class="wmad"
    )
    return crud.create_student(db_session, student_data, librarian.id)
