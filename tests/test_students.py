from library import crud
from library.config import Settings, get_settings
from library.main import app
from library.models import Student
from library.schemas import StudentCreate

from tests.conftest import SQLALCHEMY_DATABASE_URL, TEST_SECRET


def _seed_students(db_session, count):
    for n in range(1, count + 1):
        crud.create_student(
            db_session,
            StudentCreate(full_name=f"Student {n:02d}", id_card=f"STU{n:04d}"),
        )


def test_create_and_get_student(client, auth_headers, librarian):
    payload = {"full_name": "Ann", "id_card": "STU9", "student_class": "A1"}
    response = client.post("/api/students", json=payload, headers=auth_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "Student created"

    response = client.get(f"/api/students/{data['id']}", headers=auth_headers)
    assert response.status_code == 200
    student = response.json()
    assert student["id"] == data["id"]
    assert student["full_name"] == "Ann"
    assert student["id_card"] == "STU9"
    assert student["student_class"] == "A1"
    assert student["created_by"] == librarian.id


def test_create_student_without_creator(client, auth_headers):
    anonymous = Settings(
        database_url=SQLALCHEMY_DATABASE_URL,
        jwt_secret=TEST_SECRET,
        student_created_by_required=False,
    )
    app.dependency_overrides[get_settings] = lambda: anonymous

    payload = {"full_name": "Bora", "id_card": "STU10", "student_class": "B2"}
    response = client.post("/api/students", json=payload, headers=auth_headers)
    assert response.status_code == 201

    student = client.get(f"/api/students/{response.json()['id']}", headers=auth_headers)
    assert student.json()["created_by"] is None


def test_create_student_missing_fields(client, auth_headers):
    response = client.post(
        "/api/students", json={"full_name": "No Card"}, headers=auth_headers
    )
    assert response.status_code == 400


def test_get_missing_student(client, auth_headers):
    response = client.get("/api/students/999", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Student not found"


def test_list_students_paginates(client, auth_headers, db_session):
    _seed_students(db_session, 12)

    response = client.get("/api/students?page=2&limit=5", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["currentPage"] == 2
    assert data["limit"] == 5
    assert data["totalStudents"] == 12
    assert data["totalPages"] == 3
    assert [s["full_name"] for s in data["students"]] == [
        f"Student {n:02d}" for n in range(6, 11)
    ]


def test_list_students_defaults(client, auth_headers, db_session):
    _seed_students(db_session, 12)

    response = client.get("/api/students?page=abc&limit=xyz", headers=auth_headers)
    data = response.json()
    assert data["currentPage"] == 1
    assert data["limit"] == 10
    assert len(data["students"]) == 10
    assert data["totalPages"] == 2


def test_list_students_rejects_negative_page(client, auth_headers):
    response = client.get("/api/students?page=-1", headers=auth_headers)
    assert response.status_code == 400


def test_list_students_rejects_oversized_page(client, auth_headers):
    response = client.get("/api/students?page=99999999999999999999", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "page or limit is too large"


def test_list_students_clamps_limit(client, auth_headers, db_session):
    _seed_students(db_session, 3)

    response = client.get("/api/students?limit=5000", headers=auth_headers)
    data = response.json()
    assert data["limit"] == 100
    assert data["totalPages"] == 1


def test_list_students_legacy_limit(client, auth_headers, db_session):
    legacy = Settings(
        database_url=SQLALCHEMY_DATABASE_URL,
        jwt_secret=TEST_SECRET,
        strict_pagination=False,
    )
    app.dependency_overrides[get_settings] = lambda: legacy
    _seed_students(db_session, 12)

    response = client.get("/api/students?limit=5000", headers=auth_headers)
    data = response.json()
    assert data["limit"] == 5000
    assert len(data["students"]) == 12


def test_search_students(client, auth_headers, db_session):
    _seed_students(db_session, 12)
    crud.create_student(db_session, StudentCreate(full_name="Sokha Chan", id_card="X-77"))

    response = client.get("/api/students/search?query=sokha", headers=auth_headers)
    assert response.status_code == 200
    assert [s["id_card"] for s in response.json()] == ["X-77"]

    response = client.get("/api/students/search?query=x-7", headers=auth_headers)
    assert [s["full_name"] for s in response.json()] == ["Sokha Chan"]

    # Matches are capped at ten rows.
    response = client.get("/api/students/search?query=student", headers=auth_headers)
    assert len(response.json()) == 10


def test_search_students_requires_query(client, auth_headers):
    response = client.get("/api/students/search", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Search query is required"

    response = client.get("/api/students/search?query=", headers=auth_headers)
    assert response.status_code == 400


def test_update_student(client, auth_headers, test_student, db_session):
    response = client.put(
        f"/api/students/{test_student.id}",
        json={"student_class": "wmad-2"},
        headers=auth_headers,
    )
    assert response.status_code == 200

    db_session.expire_all()
    student = db_session.query(Student).filter(Student.id == test_student.id).one()
    assert student.student_class == "wmad-2"
    assert student.full_name == "Kakada Sok"


def test_update_missing_student(client, auth_headers):
    response = client.put(
        "/api/students/999", json={"full_name": "Nobody"}, headers=auth_headers
    )
    assert response.status_code == 404


def test_update_student_without_fields(client, auth_headers, test_student):
    response = client.put(
        f"/api/students/{test_student.id}", json={}, headers=auth_headers
    )
    assert response.status_code == 400


def test_delete_student(client, auth_headers, test_student, db_session):
    response = client.delete(f"/api/students/{test_student.id}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Student deleted"
    assert db_session.query(Student).count() == 0

    response = client.delete(f"/api/students/{test_student.id}", headers=auth_headers)
    assert response.status_code == 404
