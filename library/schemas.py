from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

from library.models import Role


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserSchema(BaseModel):
    id: int
    full_name: str
    username: str
    role: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    token: str
    user: UserSchema


class Identity(BaseModel):
    """The verified claims carried by a bearer token."""

    id: int
    role: str

    def has_role(self, *roles: Role) -> bool:
        return self.role in [r.value for r in roles]


class StudentBase(BaseModel):
    full_name: str = Field(..., min_length=1)
    id_card: str = Field(..., min_length=1)
    student_class: Optional[str] = None


class StudentCreate(StudentBase):
    pass


class StudentUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    id_card: Optional[str] = Field(None, min_length=1)
    student_class: Optional[str] = None


class StudentSchema(StudentBase):
    id: int
    created_by: Optional[int] = None

    class Config:
        from_attributes = True


class AuthorCreate(BaseModel):
    full_name: str = Field(..., min_length=1)


class AuthorSchema(AuthorCreate):
    id: int

    class Config:
        from_attributes = True


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)


class CategorySchema(CategoryCreate):
    id: int

    class Config:
        from_attributes = True


class BookBase(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    author_id: int
    category_id: Optional[int] = None
    quantity: int = Field(0, ge=0)


class BookCreate(BookBase):
    pass


class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    author_id: Optional[int] = None
    category_id: Optional[int] = None
    quantity: Optional[int] = Field(None, ge=0)


class BookSchema(BookBase):
    id: int
    created_by: Optional[int] = None

    class Config:
        from_attributes = True


class BookListItem(BookSchema):
    author_name: Optional[str] = None
    category_name: Optional[str] = None


class BorrowRequestSchema(BaseModel):
    student_id: int
    book_id: int


class BorrowListItem(BaseModel):
    id: int
    id_card: str
    full_name: str
    title: str
    borrow_date: datetime
    return_date: Optional[datetime] = None


class DashboardSummary(BaseModel):
    total_books: int
    total_students: int
    total_borrows: int
    borrowed_not_returned: int
    returned: int


class MessageResponse(BaseModel):
    message: str
    id: Optional[int] = None
