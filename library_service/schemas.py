from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ReportType = Literal["monthly_loans", "monthly_fines", "books", "new_members"]


class MemberBase(BaseModel):
    """
    Base schema with common member fields.

    identity_type names the identity document (e.g. NIM, KTP, SIM) and
    identity_number is its number.
    """

    identity_number: str = Field(..., min_length=1, max_length=50)
    identity_type: str = Field(..., min_length=1, max_length=20)
    full_name: str = Field(..., min_length=1, max_length=200)
    birth_date: Optional[date] = None
    class_name: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=1000)
    phone: Optional[str] = Field(None, max_length=30)


class MemberCreate(MemberBase):
    """
    Schema for registering a member.

    member_number is assigned by the server and cannot be supplied.
    """

    registration_date: Optional[datetime] = None


class MemberUpdate(BaseModel):
    """
    Schema for updating a member.

    All fields are optional to support partial updates.
    """

    identity_number: Optional[str] = Field(None, min_length=1, max_length=50)
    identity_type: Optional[str] = Field(None, min_length=1, max_length=20)
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    birth_date: Optional[date] = None
    class_name: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=1000)
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator("identity_number", "identity_type", "full_name")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("field may be omitted but not set to null")
        return value


class Member(MemberBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    member_number: str
    registration_date: datetime
    created_at: datetime
    updated_at: datetime


class BookBase(BaseModel):
    """Base schema with common book fields."""

    category: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=500)
    type: str = Field(..., min_length=1, max_length=100)
    author: str = Field(..., min_length=1, max_length=200)
    publisher: str = Field(..., min_length=1, max_length=200)
    publish_year: int = Field(..., ge=0, le=9999)


class BookCreate(BookBase):
    """
    Schema for cataloguing a book.

    available_quantity is not accepted: a new book starts with every copy
    available.
    """

    quantity: int = Field(1, ge=1)
    entry_date: Optional[datetime] = None


class BookUpdate(BaseModel):
    """
    Schema for updating a book.

    quantity may change here, but available_quantity is owned by the loan
    engine and is never taken from a request.
    """

    category: Optional[str] = Field(None, min_length=1, max_length=100)
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[str] = Field(None, min_length=1, max_length=100)
    author: Optional[str] = Field(None, min_length=1, max_length=200)
    publisher: Optional[str] = Field(None, min_length=1, max_length=200)
    publish_year: Optional[int] = Field(None, ge=0, le=9999)
    quantity: Optional[int] = Field(None, ge=1)

    @field_validator(
        "category", "title", "type", "author", "publisher", "publish_year", "quantity"
    )
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("field may be omitted but not set to null")
        return value


class Book(BookBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    book_number: str
    quantity: int
    available_quantity: int
    entry_date: datetime
    created_at: datetime
    updated_at: datetime


class LoanCreate(BaseModel):
    """Schema for lending a book to a member."""

    member_id: int = Field(..., gt=0)
    book_id: int = Field(..., gt=0)


class Loan(BaseModel):
    """
    Schema for loan responses.

    Internal Working:
    - status is the stored state, "active" or "returned"
    - display_status is "overdue" for an active loan past its due date
    - fine is serialized as a decimal string, e.g. "10000.00"
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    loan_number: str
    member_id: int
    book_id: int
    loan_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    fine: Decimal
    status: str
    display_status: str
    created_at: datetime
    updated_at: datetime


class LoanWithRelations(Loan):
    """Loan response including the borrowing member and the book."""

    member: Member
    book: Book


class ReportCreate(BaseModel):
    report_type: ReportType
    title: str = Field(..., min_length=1, max_length=200)


class Report(ReportCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    file_path: Optional[str] = None
    generated_at: datetime
    created_at: datetime


class DashboardStats(BaseModel):
    active_loans: int
    completed_loans: int
    total_books: int
    total_members: int


class ErrorResponse(BaseModel):
    detail: str
    errors: List[dict] = []
